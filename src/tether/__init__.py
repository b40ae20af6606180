"""Tether — persistent conversations over a stateless agent CLI."""

__version__ = "0.1.0"
