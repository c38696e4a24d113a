"""HTTP API for the lead marketplace."""

__version__ = "1.0.0"
