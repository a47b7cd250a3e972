"""Vimalinx relay server: authenticated SSE and long-poll message relay."""

__version__ = "0.1.0"
