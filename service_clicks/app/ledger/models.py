"""
Click ledger data models.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class LedgerModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class ClickRecord(LedgerModel):
    """A freshly recorded click."""
    click_id: int
    user_id: str
    timestamp: str


class ClickHistoryEntry(LedgerModel):
    """One click in a user's history."""
    id: int
    timestamp: str


class TopUser(LedgerModel):
    """Entry of the top-users ranking."""
    email: str
    name: Optional[str] = None
    clicks: int


class GlobalStats(LedgerModel):
    """Aggregate statistics across all users."""
    total_clicks: int
    total_users: int
    top_users: List[TopUser]


class UserInfo(LedgerModel):
    """User profile with click total."""
    id: str
    email: str
    name: Optional[str] = None
    created_at: str
    total_clicks: int
