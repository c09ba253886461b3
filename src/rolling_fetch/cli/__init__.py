"""Command-line interface for rolling fetch."""
