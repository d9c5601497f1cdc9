"""Pizza ordering backend: users, tokens, catalog items and paid orders."""

__version__ = "1.0.0"
