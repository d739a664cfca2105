"""Chain reference data and handler defaults."""
