"""
Identity middleware for the click service.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from fastapi import Request

from shared.errors import (
    AuthenticationError,
    MalformedHeaderError,
    MissingSubjectError,
    MissingTokenError,
    TokenVerificationError,
)
from shared.logging import get_logger, set_user_context
from ..validation.profile_resolver import ProfileResolver, Profile, profile_from_claims
from ..validation.token_validator import TokenVerifier


@dataclass(frozen=True)
class Identity:
    """Authenticated caller derived from a verified token."""

    id: str
    email: str
    name: str
    raw_claims: Dict[str, Any] = field(default_factory=dict)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise MissingTokenError()

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise MalformedHeaderError()

    return parts[1]


class IdentityMiddleware:
    """Verifies the bearer token and resolves the caller's profile."""

    def __init__(self, token_verifier: TokenVerifier, profile_resolver: ProfileResolver):
        self.token_verifier = token_verifier
        self.profile_resolver = profile_resolver
        self.logger = get_logger("clicks.auth_middleware")

    async def authenticate_request(self, request: Request) -> Identity:
        """Authenticate a request; failures raise AuthenticationError subclasses."""
        token = extract_bearer_token(request.headers.get("Authorization"))
        identity = await self.authenticate_token(token)

        request.state.identity = identity
        set_user_context(identity.id)
        return identity

    async def authenticate_optional(self, request: Request) -> Optional[Identity]:
        """Like authenticate_request, but a request without a header is anonymous."""
        if not request.headers.get("Authorization"):
            request.state.identity = None
            return None
        return await self.authenticate_request(request)

    async def authenticate_token(self, token: str) -> Identity:
        try:
            claims = await self.token_verifier.verify(token)
        except TokenVerificationError as e:
            self.logger.warning("JWT authentication failed", reason=e.code, details=e.details)
            raise AuthenticationError(details={"reason": e.code}) from e

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            self.logger.warning("Token missing user ID (sub)")
            raise MissingSubjectError()

        profile = await self.profile_resolver.resolve(token, subject)
        if not isinstance(profile, Profile):
            self.logger.info("Falling back to token claims for profile", user_id=subject)
            profile = profile_from_claims(claims, subject)

        self.logger.info("Request authenticated", user_id=subject, name=profile.name)

        return Identity(id=subject, email=profile.email, name=profile.name, raw_claims=claims)


def _middleware(request: Request) -> IdentityMiddleware:
    return request.app.state.identity_middleware


async def require_identity(request: Request) -> Identity:
    """FastAPI dependency: the request must carry a valid bearer token."""
    return await _middleware(request).authenticate_request(request)


async def optional_identity(request: Request) -> Optional[Identity]:
    """FastAPI dependency: anonymous requests pass with None."""
    return await _middleware(request).authenticate_optional(request)
