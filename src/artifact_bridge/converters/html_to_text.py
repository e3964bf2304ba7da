"""Render HTML rich text as plain text for the remote tracker.

The passes run in a fixed order: block and line-break tags are turned into
whitespace before the remaining tags are stripped, otherwise the layout cues
are lost.  Line breaks are emitted as ``\\n`` and table cells as ``\\t``.

Input that carries no markup at all (no tag and no entity) is treated as
plain text that has already been rendered; only the final break collapsing
is applied to it, which keeps ``html_to_text`` idempotent on its own output.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.DOTALL

# ---------------------------------------------------------------------------
# Pass tables
# ---------------------------------------------------------------------------

# Blocks removed together with their content
_STRIPPED_BLOCKS = ("head", "script", "style")

_TABLE_CELL = re.compile(r"<\s*td(?:\s[^>]*)?>", _FLAGS)
_LINE_BREAK = re.compile(r"<\s*(?:br|li)(?:\s[^>]*)?/?\s*>", _FLAGS)
_BLOCK_BREAK = re.compile(r"<\s*(?:div|tr|p)(?:\s[^>]*)?/?\s*>", _FLAGS)
_ANY_TAG = re.compile(r"<[^>]*>", _FLAGS)

_ENTITIES: list[tuple[str, str]] = [
    ("&nbsp;", " "),
    ("&bull;", " * "),
    ("&lsaquo;", "<"),
    ("&rsaquo;", ">"),
    ("&trade;", "(tm)"),
    ("&frasl;", "/"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&copy;", "(c)"),
    ("&reg;", "(r)"),
]
_OTHER_ENTITY = re.compile(r"&#?[a-z0-9]{2,6};", re.IGNORECASE)
_AMPERSAND = re.compile(r"&amp;", re.IGNORECASE)

# A literal "<" or "&" in rendered text is not markup
_MARKUP = re.compile(
    r"<\s*/?[a-z!][^>]*>|&#?[a-z0-9]{2,6};", re.IGNORECASE
)

# (pattern, replacement) applied once each, in order
_CLEANUP: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\n +\n"), "\n\n"),
    (re.compile(r"\t +\t"), "\t\t"),
    (re.compile(r"\t +\n"), "\t\n"),
    (re.compile(r"\n +\t"), "\n\t"),
    (re.compile(r"\n\t+\n"), "\n\n"),
    (re.compile(r"\n\t+"), "\n\t"),
]


def _strip_block(text: str, tag: str) -> str:
    """Remove ``<tag ...>...</tag>`` including its content."""
    text = re.sub(rf"<\s*{tag}(?:\s[^>]*)?>", f"<{tag}>", text, flags=_FLAGS)
    text = re.sub(rf"<\s*/\s*{tag}\s*>", f"</{tag}>", text, flags=_FLAGS)
    return re.sub(rf"<{tag}>.*?</{tag}>", "", text, flags=_FLAGS)


def _collapse_runs(text: str) -> str:
    """Collapse 3+ newlines to 2 and 5+ tabs to 4 until stable."""
    while "\n\n\n" in text:
        text = text.replace("\n\n\n", "\n\n")
    while "\t\t\t\t\t" in text:
        text = text.replace("\t\t\t\t\t", "\t\t\t\t")
    return text


def _render(markup: str) -> str:
    # Literal whitespace carries no layout in HTML
    text = markup.replace("\r", " ").replace("\n", " ").replace("\t", "")
    text = re.sub(r" +", " ", text)

    for tag in _STRIPPED_BLOCKS:
        text = _strip_block(text, tag)

    text = _TABLE_CELL.sub("\t", text)
    text = _LINE_BREAK.sub("\n", text)
    text = _BLOCK_BREAK.sub("\n\n", text)
    text = _ANY_TAG.sub("", text)

    for entity, replacement in _ENTITIES:
        text = re.sub(re.escape(entity), replacement, text, flags=re.IGNORECASE)
    # &amp; last, so the "&" it yields cannot start another entity
    text = _OTHER_ENTITY.sub(
        lambda m: m.group(0) if _AMPERSAND.fullmatch(m.group(0)) else "", text
    )
    text = _AMPERSAND.sub("&", text)

    for pattern, replacement in _CLEANUP:
        text = pattern.sub(replacement, text)

    return _collapse_runs(text)


def html_to_text(markup: str | None) -> str:
    """Convert HTML markup to plain text.

    Never raises: on an internal error the input is returned unchanged.

    Args:
        markup: HTML fragment or document. ``None`` is treated as empty.

    Returns:
        Plain text with paragraph breaks as ``\\n\\n``, line breaks as
        ``\\n`` and table cells separated by ``\\t``.
    """
    if not markup:
        return ""
    if not _MARKUP.search(markup):
        return _collapse_runs(markup)
    try:
        return _render(markup)
    except Exception:
        logger.exception("Unable to render markup as plain text")
        return markup
