"""Workfeed: aggregated work notifications for a menu-bar widget."""

__version__ = "1.0.0"
