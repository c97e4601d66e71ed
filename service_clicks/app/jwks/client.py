"""
Signing key cache for the identity provider's published key set.
"""

import time
import httpx
from typing import Dict, Any, Optional, List

from shared.errors import KeyNotFoundError, KeySourceUnreachableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class KeySetCache:
    """Lazily fetches and caches the issuer's JWKS.

    There is no TTL: the set is re-fetched once when a requested key id is
    missing, which is how rotated keys get picked up.
    """

    def __init__(
        self,
        jwks_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        http_timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_url = jwks_url
        self.metrics = metrics
        self.logger = get_logger("clicks.jwks")

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self._timeout = http_timeout

        self._keys: Dict[str, Dict[str, Any]] = {}
        self._loaded = False
        self._last_refresh: float = 0.0

    async def close(self) -> None:
        """Close the underlying HTTP client if this cache created it."""
        if self._owns_client:
            await self._client.aclose()

    async def warmup(self) -> None:
        """Eagerly load the key set so the first request does not pay the cost."""
        try:
            await self.refresh()
        except KeySourceUnreachableError as exc:
            self.logger.warning("JWKS warmup failed", error=exc.message)

    async def get_key(self, kid: str) -> Dict[str, Any]:
        """Return the JWK for ``kid``.

        Raises KeyNotFoundError when the key is absent after one refresh and
        KeySourceUnreachableError when the key set cannot be fetched.
        """
        key = self._keys.get(kid)
        if key is not None:
            return key

        await self.refresh()

        key = self._keys.get(kid)
        if key is None:
            self.logger.warning("Key not found", kid=kid, known_kids=sorted(self._keys))
            raise KeyNotFoundError(kid)
        return key

    async def refresh(self) -> None:
        """Fetch the full key set and replace the cache."""
        start_time = time.time()
        try:
            response = await self._client.get(self.jwks_url, timeout=self._timeout)
            response.raise_for_status()
            keys = self._parse_keys(response.json())
        except (httpx.HTTPError, ValueError) as e:
            self._record_refresh("error", start_time)
            self.logger.error("Failed to fetch JWKS", url=self.jwks_url, error=str(e))
            raise KeySourceUnreachableError(details={"url": self.jwks_url, "error": str(e)}) from e

        self._keys = {key["kid"]: key for key in keys if isinstance(key.get("kid"), str)}
        self._loaded = True
        self._last_refresh = time.time()
        self._record_refresh("success", start_time)

        self.logger.info("JWKS refreshed successfully", keys_count=len(self._keys))

    async def check_health(self) -> str:
        """Return 'ok' if the key set is loaded or can be fetched, otherwise 'error'."""
        if self._loaded:
            return "ok"
        try:
            await self.refresh()
            return "ok"
        except KeySourceUnreachableError:
            return "error"

    def clear(self):
        """Clear the cache."""
        self._keys.clear()
        self._loaded = False
        self._last_refresh = 0.0
        self.logger.info("JWKS cache cleared")

    @staticmethod
    def _parse_keys(payload: Any) -> List[Dict[str, Any]]:
        keys = payload.get("keys") if isinstance(payload, dict) else None
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")
        return [key for key in keys if isinstance(key, dict)]

    def _record_refresh(self, status: str, start_time: float):
        if self.metrics:
            self.metrics.increment_counter("jwks_refresh_total", status=status)
            duration = self.metrics.get_metric("jwks_refresh_duration_seconds")
            if duration is not None:
                duration.observe(time.time() - start_time)
