"""Vertical features; each package owns its config, errors, service and routes."""
