"""Data access: in-memory job registry and on-disk sequence cache."""
