"""HTTP API for PhotoLabel."""
