"""CLI interface for feedsync."""
