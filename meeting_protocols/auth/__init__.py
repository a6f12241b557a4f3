"""Authentication boundary."""
