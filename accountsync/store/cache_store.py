"""
Keyed record store on top of diskcache.

One Cache directory per entity type; keys are (account_id, record_id)
tuples and values are JSON-mode dicts of the pydantic record, so rows
written by older versions (e.g. comma-joined labels) are still readable.
"""
import logging
from pathlib import Path
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

from diskcache import Cache
from pydantic import BaseModel, ValidationError

from accountsync.errors import NotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
Predicate = Callable[[T], bool]


class RecordStore(Generic[T]):
    """upsert / get / delete / query for one record type."""

    def __init__(self, directory: Path, model: type[T], kind: Optional[str] = None):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))
        self._model = model
        self.kind = kind or model.__name__

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> "RecordStore[T]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def close(self) -> None:
        """Close the diskcache connection."""
        self._cache.close()

    # -------------------------------------------------------------------------
    # Row Conversion
    # -------------------------------------------------------------------------

    def _to_row(self, record: T) -> dict:
        to_row = getattr(record, "to_row", None)
        return to_row() if to_row else record.model_dump(mode="json")

    def _from_row(self, row: dict) -> T:
        from_row = getattr(self._model, "from_row", None)
        return from_row(row) if from_row else self._model.model_validate(row)

    # -------------------------------------------------------------------------
    # Single Records
    # -------------------------------------------------------------------------

    def upsert(self, account_id: str, record: T) -> None:
        """Insert or fully replace a record."""
        self._cache.set((account_id, record.id), self._to_row(record))

    def get(self, account_id: str, record_id: str) -> Optional[T]:
        row = self._cache.get((account_id, record_id))
        if row is None:
            return None
        return self._from_row(row)

    def require(self, account_id: str, record_id: str) -> T:
        """Like get(), but a missing record raises NotFoundError."""
        record = self.get(account_id, record_id)
        if record is None:
            raise NotFoundError(self.kind, record_id)
        return record

    def delete(self, account_id: str, record_id: str) -> bool:
        """Remove a record. Returns False if it was not cached."""
        return bool(self._cache.delete((account_id, record_id)))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def iter_account(self, account_id: str) -> Iterator[T]:
        """All readable records for an account. Unreadable rows are skipped."""
        for key in self._cache.iterkeys():
            if not isinstance(key, tuple) or key[0] != account_id:
                continue
            row = self._cache.get(key)
            if row is None:
                continue
            try:
                yield self._from_row(row)
            except ValidationError as e:
                logger.warning("Skipping unreadable %s row %s: %s", self.kind, key[1], e)

    def query(
        self,
        account_id: str,
        where: Iterable[Predicate] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[T]:
        """Records matching every predicate, sorted, then sliced."""
        predicates = list(where)
        rows = [r for r in self.iter_account(account_id) if all(p(r) for p in predicates)]
        if order_by:
            present = [r for r in rows if getattr(r, order_by) is not None]
            missing = [r for r in rows if getattr(r, order_by) is None]
            present.sort(key=lambda r: getattr(r, order_by), reverse=descending)
            rows = present + missing
        end = None if limit is None else offset + limit
        return rows[offset:end]

    def count(self, account_id: str, where: Iterable[Predicate] = ()) -> int:
        predicates = list(where)
        return sum(1 for r in self.iter_account(account_id) if all(p(r) for p in predicates))

    def clear_account(self, account_id: str) -> int:
        """Drop every record of an account (used when an account is removed)."""
        removed = 0
        for key in list(self._cache.iterkeys()):
            if isinstance(key, tuple) and key[0] == account_id:
                removed += bool(self._cache.delete(key))
        return removed
