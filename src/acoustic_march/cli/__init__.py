"""Command-line interface for acoustic-march."""
