"""Ports (Protocols) the application layer depends on."""
