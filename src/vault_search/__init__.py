"""vaultsearch - local full-text search over a vault of markdown notes."""

__version__ = "0.1.0"
