"""Core configuration, errors and time helpers."""
