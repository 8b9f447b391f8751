"""Cross-session adapter comparison."""
