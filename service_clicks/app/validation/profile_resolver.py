"""
Profile resolution from the identity provider's userinfo endpoint.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector

DEFAULT_NAME = "User"

USERINFO_EMAIL_FIELDS = ("email", "preferred_username")
USERINFO_NAME_FIELDS = ("name", "given_name", "preferred_username")
CLAIM_EMAIL_FIELDS = ("email", "preferred_username", "username")
CLAIM_NAME_FIELDS = ("name", "given_name", "preferred_username")


@dataclass(frozen=True)
class Profile:
    """Display attributes of a user."""

    email: str
    name: str


class ProfileUnavailable:
    """Marker returned when the profile endpoint could not be used."""

    _instance: Optional["ProfileUnavailable"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "PROFILE_UNAVAILABLE"


PROFILE_UNAVAILABLE = ProfileUnavailable()

ProfileResult = Union[Profile, ProfileUnavailable]


def _first(source: Dict[str, Any], fields: Iterable[str]) -> Optional[str]:
    for field in fields:
        value = source.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def profile_from_userinfo(userinfo: Dict[str, Any], subject: str) -> Profile:
    """Build a profile from a userinfo response."""
    return Profile(
        email=_first(userinfo, USERINFO_EMAIL_FIELDS) or f"user-{subject}",
        name=_first(userinfo, USERINFO_NAME_FIELDS) or DEFAULT_NAME,
    )


def profile_from_claims(claims: Dict[str, Any], subject: str) -> Profile:
    """Build a profile from verified token claims."""
    return Profile(
        email=_first(claims, CLAIM_EMAIL_FIELDS) or f"user-{subject}",
        name=_first(claims, CLAIM_NAME_FIELDS) or DEFAULT_NAME,
    )


class ProfileResolver:
    """Fetches the authoritative profile for a token.

    Any failure (transport error, timeout, non-2xx status, body that is not
    a JSON object) yields PROFILE_UNAVAILABLE instead of an exception.
    """

    def __init__(
        self,
        userinfo_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        http_timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.userinfo_url = userinfo_url
        self.metrics = metrics
        self.logger = get_logger("clicks.profile")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self._timeout = http_timeout

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, token: str, subject: str) -> ProfileResult:
        """Return the Profile for ``token`` or PROFILE_UNAVAILABLE."""
        try:
            response = await self._client.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            return self._unavailable("request_failed", error=str(e))

        if not response.is_success:
            return self._unavailable("bad_status", status_code=response.status_code)

        try:
            userinfo = response.json()
        except ValueError as e:
            return self._unavailable("invalid_body", error=str(e))

        if not isinstance(userinfo, dict):
            return self._unavailable("invalid_body", error="userinfo is not an object")

        self._record("success")
        return profile_from_userinfo(userinfo, subject)

    def _unavailable(self, reason: str, **context) -> ProfileUnavailable:
        self.logger.warning("Error fetching UserInfo", reason=reason, **context)
        self._record(reason)
        return PROFILE_UNAVAILABLE

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("profile_lookups_total", outcome=outcome)
