"""Live scan acquisition."""
