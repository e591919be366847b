"""Service layer - business logic of the media pipeline."""
