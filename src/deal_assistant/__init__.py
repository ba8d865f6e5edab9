"""Chat session engine for the deals assistant."""

__version__ = "0.1.0"
