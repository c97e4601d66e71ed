"""
JWKS client package.

Fetches and caches the JSON Web Key Set used to verify token signatures.
Keys are selected by kid; an unknown kid triggers exactly one re-fetch of
the whole set before the key is declared missing.
"""

from .client import KeySetCache

__all__ = ["KeySetCache"]
