"""Admissions desk: local store, remote snapshot sync, scoring and seat allocation."""

__version__ = "2.0.0"
