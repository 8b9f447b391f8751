"""Single-session signal history."""
