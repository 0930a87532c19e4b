"""
Per (account, sync type) change cursors.
"""
import logging
import time
from pathlib import Path
from typing import Optional

from diskcache import Cache

from accountsync.models.account import SyncCursor, SyncType


logger = logging.getLogger(__name__)


def now_millis() -> int:
    return int(time.time() * 1000)


class SyncCursorTracker:
    """Persists the last processed history id / sync token per account and type."""

    def __init__(self, directory: Path):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    def get(self, account_id: str, sync_type: SyncType) -> Optional[SyncCursor]:
        row = self._cache.get((account_id, SyncType(sync_type).value))
        return SyncCursor.model_validate(row) if row is not None else None

    def set(self, account_id: str, sync_type: SyncType, cursor: Optional[str]) -> SyncCursor:
        """Upsert the cursor and stamp the sync time."""
        state = SyncCursor(
            account_id=account_id,
            sync_type=SyncType(sync_type),
            last_cursor=None if cursor is None else str(cursor),
            last_sync_at=now_millis(),
        )
        self._cache.set((account_id, state.sync_type.value), state.model_dump(mode="json"))
        logger.debug("Cursor for %s/%s -> %s", account_id, state.sync_type.value, state.last_cursor)
        return state

    def clear(self, account_id: str, sync_type: SyncType) -> bool:
        """Forget a cursor; the next pass for that type will be a full sync."""
        return bool(self._cache.delete((account_id, SyncType(sync_type).value)))

    def for_account(self, account_id: str) -> dict[SyncType, Optional[SyncCursor]]:
        return {sync_type: self.get(account_id, sync_type) for sync_type in SyncType}
