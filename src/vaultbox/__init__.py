"""vaultbox: client-side encryption vault for file payloads."""

__version__ = "0.1.0"
