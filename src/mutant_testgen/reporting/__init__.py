"""Reporting components."""

from .reporter import SessionReporter

__all__ = ["SessionReporter"]
