"""Member payment reconciliation engine for imported bank statements."""

__version__ = "0.1.0"
