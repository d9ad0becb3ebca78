"""Feedsync: keep article metadata in sync with subscribed RSS/Atom feeds."""

__version__ = "0.1.0"
