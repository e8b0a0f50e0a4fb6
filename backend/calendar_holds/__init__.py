"""Provisional calendar holds with automatic expiry."""

__version__ = "1.0.0"
