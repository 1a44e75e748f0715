"""Domain models: value objects, session aggregates and the error taxonomy."""
