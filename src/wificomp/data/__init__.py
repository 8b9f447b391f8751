"""Session data model, persistence and export."""
