"""Shared helpers: errors, logging and retry."""
