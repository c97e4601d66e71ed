"""
Token verification for the click service.
"""

from typing import Dict, Any, Optional

from jose import jwk, jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTError

from shared.errors import (
    AudienceMismatchError,
    InvalidSignatureError,
    IssuerMismatchError,
    TokenExpiredError,
    TokenVerificationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.client import KeySetCache

DEFAULT_ALGORITHM = "RS256"


class TokenVerifier:
    """Validates bearer tokens against the issuer's key set.

    Checks, in order: header and key id, signature, expiry, issuer,
    audience. Each failure raises a distinct TokenVerificationError
    subclass; callers are expected to collapse them into one
    authentication failure. Tokens are never retried.
    """

    def __init__(self, key_cache: KeySetCache, issuer: str, audience: str,
                 metrics: Optional[MetricsCollector] = None, leeway: int = 0):
        self.key_cache = key_cache
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway
        self.metrics = metrics
        self.logger = get_logger("clicks.validator")

    async def verify(self, token: str) -> Dict[str, Any]:
        """Verify a JWT and return its claims."""
        try:
            claims = await self._verify(token)
        except TokenVerificationError as e:
            self._record("failure")
            self.logger.warning("Token verification failed", reason=e.code, error=e.message)
            raise

        self._record("success")
        self.logger.debug("Token verified successfully", sub=claims.get("sub"))
        return claims

    async def _verify(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise InvalidSignatureError("Token header could not be parsed", details={"error": str(e)}) from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise InvalidSignatureError("Token missing key ID")

        key_data = await self.key_cache.get_key(kid)
        algorithm = key_data.get("alg", DEFAULT_ALGORITHM)

        try:
            public_key = jwk.construct(key_data, algorithm)
            claims = jwt.decode(
                token,
                public_key,
                algorithms=[algorithm],
                options={
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_exp": True,
                    "require_exp": True,
                    "verify_at_hash": False,
                    "leeway": self.leeway,
                }
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError(details={"error": str(e)}) from e
        except (JWTError, JOSEError) as e:
            if '"exp"' in str(e):
                raise TokenExpiredError(details={"error": str(e)}) from e
            raise InvalidSignatureError(details={"error": str(e)}) from e

        self._check_issuer(claims)
        self._check_audience(claims)
        return claims

    def _check_issuer(self, claims: Dict[str, Any]):
        issuer = claims.get("iss")
        if issuer != self.issuer:
            raise IssuerMismatchError(details={"expected": self.issuer, "actual": issuer})

    def _check_audience(self, claims: Dict[str, Any]):
        audience = claims.get("aud")
        if isinstance(audience, str):
            audiences = [audience]
        elif isinstance(audience, list):
            audiences = audience
        else:
            audiences = []

        if self.audience not in audiences:
            raise AudienceMismatchError(details={"expected": self.audience, "actual": audience})

    def _record(self, status: str):
        if self.metrics:
            self.metrics.increment_counter("token_validations_total", status=status)

