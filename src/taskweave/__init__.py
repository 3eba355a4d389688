"""taskweave: AI-assisted task graph management."""

__version__ = "0.4.0"
