"""Notification message rendering."""

from src.reporting.renderer import ReportRenderer, build_context, format_finding

__all__ = [
    "ReportRenderer",
    "build_context",
    "format_finding",
]
