"""Shared helpers (logging, calendar dates)."""
