"""Compare the receive quality of WiFi adapters from recorded scan sessions."""
