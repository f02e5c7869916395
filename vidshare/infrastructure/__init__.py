"""Infrastructure adapters (data store)."""
