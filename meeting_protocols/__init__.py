"""Collaborative editing and versioning engine for meeting protocols."""

__version__ = "0.1.0"
