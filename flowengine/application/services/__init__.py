"""Core application services: graph rules, flow selection, task registry and runner."""
