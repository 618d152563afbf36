"""Command-line application."""
