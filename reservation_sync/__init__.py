"""Reservation booking sync core: store, change feed, optimistic edits, views."""

__version__ = "0.1.0"
