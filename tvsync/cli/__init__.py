"""Command-line interface for tvsync."""
