"""Domain Layer: models, error taxonomy, events and interfaces (ports)."""
