"""Domain layer: types, storage entities and evaluation services."""
