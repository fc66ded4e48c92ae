"""Command-line interface for fragments."""
