"""Completion provider adapters."""
