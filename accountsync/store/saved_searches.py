"""
Saved search queries.
"""
import logging
import uuid
from pathlib import Path

from diskcache import Cache

from accountsync.errors import NotFoundError
from accountsync.models.results import SavedSearch
from accountsync.store.cursors import now_millis


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "query", "is_favorite")


class SavedSearchStore:
    def __init__(self, directory: Path):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    def _all(self, account_id: str) -> list[SavedSearch]:
        searches = (SavedSearch.model_validate(self._cache[key]) for key in self._cache.iterkeys())
        return [s for s in searches if s.account_id == account_id]

    def _put(self, search: SavedSearch) -> SavedSearch:
        self._cache.set(search.id, search.model_dump(mode="json"))
        return search

    def get(self, search_id: str) -> SavedSearch:
        row = self._cache.get(search_id)
        if row is None:
            raise NotFoundError("SavedSearch", search_id)
        return SavedSearch.model_validate(row)

    def save(self, account_id: str, name: str, query: str, is_favorite: bool = False) -> SavedSearch:
        search = SavedSearch(
            id=uuid.uuid4().hex,
            account_id=account_id,
            name=name,
            query=query,
            is_favorite=is_favorite,
            created_at=now_millis(),
        )
        logger.info('Saved search created: "%s" (%s)', name, search.id)
        return self._put(search)

    def list_searches(self, account_id: str, favorites_only: bool = False, limit: int = 50) -> list[SavedSearch]:
        """Favorites first, then most used, then most recently used."""
        searches = self._all(account_id)
        if favorites_only:
            searches = [s for s in searches if s.is_favorite]
        searches.sort(key=lambda s: (s.is_favorite, s.use_count, s.last_used_at or 0), reverse=True)
        return searches[:limit]

    def update(self, search_id: str, **updates) -> SavedSearch:
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise ValueError("No valid fields to update")
        search = self.get(search_id)
        return self._put(search.model_copy(update=changes))

    def delete(self, search_id: str) -> bool:
        return bool(self._cache.delete(search_id))

    def record_usage(self, search_id: str) -> SavedSearch:
        search = self.get(search_id)
        return self._put(search.model_copy(update={"use_count": search.use_count + 1, "last_used_at": now_millis()}))

    def recent(self, account_id: str, limit: int = 10) -> list[SavedSearch]:
        used = [s for s in self._all(account_id) if s.last_used_at is not None]
        used.sort(key=lambda s: s.last_used_at, reverse=True)
        return used[:limit]
