"""
Click service for the Click Ledger.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Request

from shared.base_service import BaseService, SERVICE_VERSION
from shared.config import ServiceConfig
from shared.errors import NotFoundError, ValidationError
from .domain.auth_middleware import Identity, IdentityMiddleware, optional_identity, require_identity
from .jwks.client import KeySetCache
from .ledger.click_ledger import ClickLedger
from .persistence.database import create_database
from .validation.profile_resolver import ProfileResolver
from .validation.token_validator import TokenVerifier

DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000


def parse_history_limit(raw: Optional[str]) -> int:
    """Validate the ``limit`` query parameter of the history endpoint."""
    if raw is None or raw == "":
        return DEFAULT_HISTORY_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError("Limit must be between 1 and 1000", details={"limit": raw}) from None
    if limit < 1 or limit > MAX_HISTORY_LIMIT:
        raise ValidationError("Limit must be between 1 and 1000", details={"limit": limit})
    return limit


def get_ledger(request: Request) -> ClickLedger:
    return request.app.state.ledger


class ClicksService(BaseService):
    """Click service implementation.

    Collaborators can be injected for tests; anything not supplied is
    built from configuration.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        ledger: Optional[ClickLedger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("clicks", 3001, config)

        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self._owns_http_client = http_client is None

        self.ledger = ledger or ClickLedger(create_database(self.config.database_url), metrics=self.metrics)
        self.key_cache = KeySetCache(
            self.config.resolved_jwks_url,
            self.http_client,
            http_timeout=self.config.http_timeout_seconds,
            metrics=self.metrics,
        )
        self.token_verifier = TokenVerifier(
            self.key_cache,
            issuer=self.config.issuer,
            audience=self.config.client_id,
            metrics=self.metrics,
        )
        self.profile_resolver = ProfileResolver(
            self.config.resolved_userinfo_url,
            self.http_client,
            http_timeout=self.config.http_timeout_seconds,
            metrics=self.metrics,
        )
        self.identity_middleware = IdentityMiddleware(self.token_verifier, self.profile_resolver)

        self.app.state.ledger = self.ledger
        self.app.state.identity_middleware = self.identity_middleware
        self.app.state.clicks_service = self

        self.logger.info(
            "JWT verification configured",
            issuer=self.config.issuer,
            client_id=self.config.client_id,
            jwks_url=self.config.resolved_jwks_url
        )

        self._setup_click_routes()

    async def startup(self):
        self.logger.info("Starting backend server", environment=self.config.env, port=self.config.port)
        await self.ledger.start()
        self.logger.info("Database initialized")
        await self.key_cache.warmup()

    async def shutdown(self):
        self.logger.info("Shutting down server")
        await self.ledger.stop()
        if self._owns_http_client:
            await self.http_client.aclose()

    def _setup_click_routes(self):
        """Set up click routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "clicks",
                "message": "Click Ledger - Click Service",
                "version": SERVICE_VERSION
            }

        @self.app.get("/api/test")
        async def api_test(identity: Optional[Identity] = Depends(optional_identity)):
            """Public endpoint; reports who is calling when a token is present."""
            return {
                "success": True,
                "message": "API is functional",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "authenticated": identity is not None,
                "userId": identity.id if identity else None
            }

        router = APIRouter(prefix="/api/clicks", tags=["clicks"])

        @router.post("", status_code=201)
        async def record_click(identity: Identity = Depends(require_identity),
                               ledger: ClickLedger = Depends(get_ledger)):
            """Record a click for the authenticated user."""
            record = await ledger.record_click(identity.id, identity.email, identity.name)
            self.metrics.record_business_event("click_recorded")
            return record.to_dict()

        @router.get("/count")
        async def click_count(identity: Identity = Depends(require_identity),
                              ledger: ClickLedger = Depends(get_ledger)):
            """Total click count of the authenticated user."""
            count = await ledger.get_user_click_count(identity.id)
            return {"userId": identity.id, "totalClicks": count}

        @router.get("/history")
        async def click_history(request: Request,
                                identity: Identity = Depends(require_identity),
                                ledger: ClickLedger = Depends(get_ledger)):
            """Most recent clicks of the authenticated user."""
            limit = parse_history_limit(request.query_params.get("limit"))
            history = await ledger.get_user_click_history(identity.id, limit)
            return {
                "userId": identity.id,
                "clicks": [entry.to_dict() for entry in history],
                "count": len(history)
            }

        @router.get("/stats")
        async def global_stats(identity: Identity = Depends(require_identity),
                               ledger: ClickLedger = Depends(get_ledger)):
            """Global click statistics across all users."""
            stats = await ledger.get_global_stats()
            return stats.to_dict()

        @router.get("/me")
        async def me(identity: Identity = Depends(require_identity),
                     ledger: ClickLedger = Depends(get_ledger)):
            """Stored profile and click total of the authenticated user."""
            user_info = await ledger.get_user_info(identity.id)
            if user_info is None:
                raise NotFoundError("Could not find user information", details={"userId": identity.id})
            return user_info.to_dict()

        @router.delete("/logout")
        async def logout(identity: Identity = Depends(require_identity),
                         ledger: ClickLedger = Depends(get_ledger)):
            """Delete every click of the authenticated user."""
            deleted = await ledger.delete_user_clicks(identity.id)
            self.metrics.record_business_event("clicks_deleted")
            return {"deletedClicks": deleted}

        self.app.include_router(router)

    def _available_endpoints(self) -> Dict[str, Any]:
        return {
            "health": "GET /health",
            "test": "GET /api/test",
            "clicks": {
                "record": "POST /api/clicks",
                "count": "GET /api/clicks/count",
                "history": "GET /api/clicks/history?limit=100",
                "stats": "GET /api/clicks/stats",
                "me": "GET /api/clicks/me",
                "logout": "DELETE /api/clicks/logout"
            }
        }

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check click service dependencies."""
        return {
            "database": await self.ledger.check_health(),
            "jwks": await self.key_cache.check_health()
        }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ClicksService(config, **kwargs)
    return service.app


def main():
    service = ClicksService()
    service.run()


if __name__ == "__main__":
    main()
