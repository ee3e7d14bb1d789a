"""Core domain logic for flock: settings, errors, RBAC and tagging."""
