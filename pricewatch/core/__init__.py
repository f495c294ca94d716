"""Core error types."""
