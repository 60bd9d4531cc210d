"""Domain layer: enums, exceptions, entities and value objects. No I/O."""
