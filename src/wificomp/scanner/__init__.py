"""WiFi scan sources."""
