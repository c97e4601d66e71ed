"""
Mock OIDC identity provider serving the key set, userinfo and token endpoints.
"""

import json
from typing import Dict, Any, Optional

import jwt
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.algorithms import RSAAlgorithm

from shared.logging import get_logger
from shared.test_helpers import (
    TEST_CLIENT_ID,
    TEST_ISSUER,
    MockUser,
    SigningKey,
    build_jwks,
    create_test_token,
    create_test_users,
    generate_signing_key,
)

DEFAULT_PASSWORD = "password123"
TOKEN_LIFETIME_SECONDS = 3600


class MockIdentityProvider:
    """Mock identity provider implementation.

    Tokens are RS256-signed with the active key. Rotating the key keeps the
    previous one published until ``retire_previous_keys`` is called, so
    outstanding tokens stay verifiable across a rotation.
    """

    def __init__(self, issuer: str = TEST_ISSUER, client_id: str = TEST_CLIENT_ID):
        self.logger = get_logger("mock.identity_provider")
        self.app = FastAPI(title="Mock Identity Provider", version="1.0.0")

        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.users: Dict[str, MockUser] = {user.user_id: user for user in create_test_users()}

        self.signing_key: SigningKey = generate_signing_key("mock-key-1")
        self.published_keys = [self.signing_key]
        self.userinfo_enabled = True
        self.jwks_requests = 0
        self.userinfo_requests = 0

        self._setup_routes()

    def _setup_routes(self):
        """Set up mock identity provider routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "mock-identity-provider",
                "message": "Mock identity provider for the Click Ledger",
                "version": "1.0.0",
                "issuer": self.issuer
            }

        @self.app.get("/.well-known/openid-configuration")
        async def openid_configuration():
            """OpenID Connect discovery document."""
            return {
                "issuer": self.issuer,
                "token_endpoint": f"{self.issuer}/oauth/v2/token",
                "userinfo_endpoint": f"{self.issuer}/oidc/v1/userinfo",
                "jwks_uri": f"{self.issuer}/oauth/v2/keys",
                "grant_types_supported": ["password"],
                "subject_types_supported": ["public"],
                "id_token_signing_alg_values_supported": ["RS256"],
                "scopes_supported": ["openid", "profile", "email"]
            }

        @self.app.get("/oauth/v2/keys")
        async def jwks_endpoint():
            """Key set endpoint."""
            self.jwks_requests += 1
            return build_jwks(*self.published_keys)

        @self.app.post("/oauth/v2/token")
        async def token_endpoint(
            grant_type: str = Query(...),
            client_id: str = Query(...),
            username: Optional[str] = Query(None),
            password: Optional[str] = Query(None)
        ):
            """Token endpoint; only the password grant is supported."""
            if client_id != self.client_id:
                raise HTTPException(status_code=400, detail="Invalid client")

            if grant_type != "password":
                raise HTTPException(status_code=400, detail="Unsupported grant type")

            user = self._authenticate(username, password)
            return {
                "access_token": self.issue_token(user.user_id),
                "expires_in": TOKEN_LIFETIME_SECONDS,
                "token_type": "Bearer",
                "scope": "openid profile email"
            }

        @self.app.get("/oidc/v1/userinfo")
        async def userinfo_endpoint(
            credentials: HTTPAuthorizationCredentials = Depends(HTTPBearer())
        ):
            """User info endpoint."""
            self.userinfo_requests += 1
            if not self.userinfo_enabled:
                raise HTTPException(status_code=503, detail="Userinfo temporarily unavailable")

            payload = self._decode(credentials.credentials)
            user = self.users.get(payload.get("sub"))
            if user is None:
                raise HTTPException(status_code=401, detail="Invalid user")

            return user.userinfo()

    def _authenticate(self, username: Optional[str], password: Optional[str]) -> MockUser:
        if not username or not password:
            raise HTTPException(status_code=400, detail="Username and password required")

        for user in self.users.values():
            if user.username == username and password == DEFAULT_PASSWORD:
                return user

        raise HTTPException(status_code=401, detail="Invalid credentials")

    def _decode(self, token: str) -> Dict[str, Any]:
        """Verify a token against the published keys."""
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            key = next((k for k in self.published_keys if k.kid == kid), None)
            if key is None:
                raise HTTPException(status_code=401, detail="Unknown signing key")

            public_key = RSAAlgorithm.from_jwk(json.dumps(key.public_jwk))
            return jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=self.issuer
            )
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    def issue_token(self, user_id: str, expires_in: int = TOKEN_LIFETIME_SECONDS, **claims) -> str:
        """Mint an access token for a known user, signed with the active key."""
        user = self.users[user_id]
        claims.setdefault("preferred_username", user.username)
        return create_test_token(
            self.signing_key,
            user.user_id,
            issuer=self.issuer,
            audience=self.client_id,
            expires_in=expires_in,
            **claims
        )

    def add_user(self, user: MockUser):
        self.users[user.user_id] = user

    def rotate_key(self, kid: str) -> SigningKey:
        """Sign new tokens with a fresh key; the old key stays published."""
        self.signing_key = generate_signing_key(kid)
        self.published_keys.append(self.signing_key)
        self.logger.info("Signing key rotated", kid=kid)
        return self.signing_key

    def retire_previous_keys(self):
        self.published_keys = [self.signing_key]


def create_app():
    """Create mock identity provider application."""
    provider = MockIdentityProvider()
    return provider.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
