"""Rich text conversion helpers."""

from .html_to_text import html_to_text

__all__ = ["html_to_text"]
