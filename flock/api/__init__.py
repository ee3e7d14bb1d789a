"""HTTP API for flock."""
