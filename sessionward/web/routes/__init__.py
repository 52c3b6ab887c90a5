"""API route modules."""

from . import auth

__all__ = ["auth"]
