"""Command-line interface for aksflow."""
