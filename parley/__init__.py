"""Parley: authenticated, session-scoped streaming chat."""

__version__ = "0.1.0"
