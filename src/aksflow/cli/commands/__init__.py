"""aksflow CLI command groups."""
