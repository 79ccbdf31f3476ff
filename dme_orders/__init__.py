"""Durable medical equipment order extraction from physician notes."""

__version__ = "1.0.0"
