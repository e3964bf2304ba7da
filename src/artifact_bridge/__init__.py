"""Bidirectional artifact reconciliation between a local test-management
system and a remote work-item tracker."""

__version__ = "0.1.0"
