"""
Domain utilities for the Click Service.

Holds the identity middleware that turns a bearer token into an Identity.
"""

from .auth_middleware import Identity, IdentityMiddleware

__all__ = [
    "Identity",
    "IdentityMiddleware",
]
