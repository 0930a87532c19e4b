"""
Result shapes returned to callers.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field


@dataclass
class SyncResult:
    """Outcome of one sync pass. `type` is "full" or "incremental"."""
    synced: int
    type: str = "full"


@dataclass
class CalendarSyncResult:
    total_synced: int
    calendars: int
    results: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchItemResult:
    id: str
    success: bool
    error: Optional[str] = None


@dataclass
class BatchModifyResult:
    modified: int


@dataclass
class BatchTrashResult:
    trashed: int
    results: list[BatchItemResult] = field(default_factory=list)


@dataclass
class BatchDeleteResult:
    deleted: int
    results: list[BatchItemResult] = field(default_factory=list)


@dataclass
class SearchResult:
    emails: list[dict]
    total: int
    source: str
    query: str
    remote_total: Optional[int] = None
    remote_error: Optional[str] = None


class SavedSearch(BaseModel):
    id: str
    account_id: str
    name: str
    query: str
    is_favorite: bool = False
    use_count: int = 0
    last_used_at: Optional[int] = Field(default=None, description="Epoch millis")
    created_at: int
