"""Domain entities and API DTOs."""
