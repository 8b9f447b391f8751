"""Permanent and per-session access point exclusions."""
