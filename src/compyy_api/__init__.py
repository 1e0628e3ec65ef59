"""Compyy API: authentication, sessions and rate limiting for the Compyy platform."""

__version__ = "0.1.0"
