"""Command-line interface for Storage Guard."""
