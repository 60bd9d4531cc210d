"""Core: configuration, constants, and request-scoped context."""
