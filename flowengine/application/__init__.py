"""Application layer: ports, task drivers, core services and use cases."""
