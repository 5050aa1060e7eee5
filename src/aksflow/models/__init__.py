"""Pydantic models for pipeline configuration, state and releases."""
