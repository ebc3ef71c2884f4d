"""dbbroker: multi-engine database connection broker."""

__version__ = "1.0.0"
