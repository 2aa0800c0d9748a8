"""Command-line interface for varietymcp."""
