"""User accounts and authentication service."""

__version__ = "0.3.0"
