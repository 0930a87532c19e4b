"""
Account and sync-cursor models.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncType(str, Enum):
    MAIL = "mail"
    CALENDAR = "calendar"
    CONTACTS = "contacts"


class Account(BaseModel):
    """A linked remote identity."""

    id: str = Field(description="Local account ID")
    provider: str = Field(default="google")
    email: str = Field(description="Account email, used to look up tokens")
    display_name: str = Field(default="")
    scopes: set[str] = Field(default_factory=set)
    added_at: Optional[int] = Field(default=None, description="Epoch millis")
    sync_enabled: bool = Field(default=True)


class SyncCursor(BaseModel):
    """Last processed change cursor for one (account, sync type)."""

    account_id: str
    sync_type: SyncType
    last_cursor: Optional[str] = Field(default=None, description="History ID or sync token")
    last_sync_at: int = Field(description="Epoch millis of the last successful pass")
