"""
Gmail-style search over the local email cache.

    from:alice subject:"weekly report" has:attachment older_than:7d -> 4 clauses

Every clause is conjunctive. Matching is case-insensitive substring
matching. `AND` / `OR` are accepted and dropped; there is no OR.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from googleapiclient.errors import HttpError

from accountsync.connectors.gmail_parser import parse_message
from accountsync.connectors.google_session import GoogleSession
from accountsync.labels import serialize_labels
from accountsync.models.email import EmailRecord
from accountsync.models.results import SavedSearch, SearchResult
from accountsync.store.cache_store import RecordStore
from accountsync.store.cursors import now_millis
from accountsync.store.saved_searches import SavedSearchStore


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
RELATIVE_UNITS_MS = {"d": DAY_MS, "w": 7 * DAY_MS, "m": 30 * DAY_MS, "y": 365 * DAY_MS}
SIZE_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}
MAX_REMOTE_FETCH = 10

# An operator value: a double-quoted phrase, or a bare token
VALUE = r'("[^"]+"|\S+)'

FREE_TEXT_FIELDS = ("subject", "snippet", "from_email", "from_name", "body_text")
NEGATED_FIELDS = ("subject", "snippet", "from_email")


# -----------------------------------------------------------------------------
# Clauses
# -----------------------------------------------------------------------------

CONTAINS = "contains"
NOT_CONTAINS = "not_contains"
FLAG = "flag"
DATE_GTE = "date_gte"
DATE_LTE = "date_lte"
DATE_GT = "date_gt"
DATE_LT = "date_lt"
LENGTH_GT = "length_gt"
LENGTH_LT = "length_lt"
LABEL = "label"
FILENAME = "filename"


@dataclass(frozen=True)
class Clause:
    kind: str
    operand: tuple[str, ...] = ()


def _text(record: EmailRecord, name: str) -> str:
    if name == "labels":
        return serialize_labels(record.labels)
    value = getattr(record, name)
    if value is None:
        return ""
    if isinstance(value, list):
        return ",".join(value)
    return str(value)


def _like(haystack: str, needle: str) -> bool:
    return needle.lower() in haystack.lower()


def _compare(value: Optional[int], op: Callable[[int, int], bool], param: int) -> bool:
    # Missing dates never match, like NULL in SQL
    return value is not None and op(value, param)


EVALUATORS: dict[str, Callable[[EmailRecord, tuple, Any], bool]] = {
    CONTAINS: lambda r, fields, p: any(_like(_text(r, f), p) for f in fields),
    NOT_CONTAINS: lambda r, fields, p: not any(_like(_text(r, f), p) for f in fields),
    FLAG: lambda r, fields, p: bool(getattr(r, fields[0])) is p,
    DATE_GTE: lambda r, fields, p: _compare(r.date, lambda a, b: a >= b, p),
    DATE_LTE: lambda r, fields, p: _compare(r.date, lambda a, b: a <= b, p),
    DATE_GT: lambda r, fields, p: _compare(r.date, lambda a, b: a > b, p),
    DATE_LT: lambda r, fields, p: _compare(r.date, lambda a, b: a < b, p),
    LENGTH_GT: lambda r, fields, p: len(r.body_text or "") > p,
    LENGTH_LT: lambda r, fields, p: len(r.body_text or "") < p,
    LABEL: lambda r, fields, p: _like(_text(r, "labels"), p),
    FILENAME: lambda r, fields, p: r.has_attachments and _like(r.raw_payload or "", p),
}


@dataclass
class SearchQuery:
    """Ordered clauses and their bound values (one value per clause)."""

    clauses: list[Clause] = field(default_factory=list)
    params: list[Any] = field(default_factory=list)

    def add(self, kind: str, operand: tuple[str, ...], param: Any) -> None:
        self.clauses.append(Clause(kind, operand))
        self.params.append(param)

    def matches(self, record: EmailRecord) -> bool:
        return all(EVALUATORS[c.kind](record, c.operand, p) for c, p in zip(self.clauses, self.params))

    def __len__(self) -> int:
        return len(self.clauses)


# -----------------------------------------------------------------------------
# Value Parsing
# -----------------------------------------------------------------------------

def parse_date(value: str) -> Optional[int]:
    """YYYY/MM/DD or YYYY-MM-DD to epoch millis at UTC midnight."""
    try:
        day = datetime.strptime(value.replace("/", "-"), "%Y-%m-%d")
    except ValueError:
        return None
    return int(day.replace(tzinfo=timezone.utc).timestamp() * 1000)


def parse_relative(value: str) -> Optional[int]:
    """`<n><d|w|m|y>` to a duration in millis."""
    match = re.fullmatch(r"(\d+)([dwmy])", value, re.IGNORECASE)
    if not match:
        return None
    return int(match.group(1)) * RELATIVE_UNITS_MS[match.group(2).lower()]


def parse_size(value: str) -> Optional[int]:
    """`<n>[K|M|G]` to bytes (powers of 1024)."""
    match = re.fullmatch(r"(\d+)([KMG])?", value, re.IGNORECASE)
    if not match:
        return None
    return int(match.group(1)) * SIZE_UNITS[(match.group(2) or "").upper()]


# -----------------------------------------------------------------------------
# Translator
# -----------------------------------------------------------------------------

def _valued(query: SearchQuery, op: str, value: str, now: int) -> None:
    if op == "from:":
        query.add(CONTAINS, ("from_email", "from_name"), value)
    elif op == "to:":
        query.add(CONTAINS, ("to_emails",), value)
    elif op == "subject:":
        query.add(CONTAINS, ("subject",), value)
    elif op in ("after:", "before:"):
        moment = parse_date(value)
        if moment is not None:
            query.add(DATE_GTE if op == "after:" else DATE_LTE, ("date",), moment)
    elif op in ("older_than:", "newer_than:"):
        duration = parse_relative(value)
        if duration:
            query.add(DATE_LT if op == "older_than:" else DATE_GT, ("date",), now - duration)
    elif op in ("larger:", "smaller:"):
        size = parse_size(value)
        if size:
            query.add(LENGTH_GT if op == "larger:" else LENGTH_LT, ("body_text",), size)
    elif op == "label:":
        query.add(LABEL, ("labels",), value.upper())
    elif op == "filename:":
        query.add(FILENAME, ("raw_payload",), f'"filename":"{value}')


FLAG_OPERATORS = {
    "has:attachment": ("has_attachments", True),
    "is:unread": ("is_read", False),
    "is:read": ("is_read", True),
    "is:starred": ("is_starred", True),
}

# Applied in this order; values are consumed from the query as they match
OPERATORS = (
    "from:", "to:", "subject:",
    "has:attachment", "is:unread", "is:read", "is:starred",
    "after:", "before:", "older_than:", "newer_than:",
    "larger:", "smaller:", "label:", "filename:",
)


def translate(text: str, now: Optional[int] = None) -> SearchQuery:
    """Parse a Gmail-style query into a SearchQuery."""
    now = now if now is not None else now_millis()
    query = SearchQuery()
    remaining = text.strip()

    for op in OPERATORS:
        if op in FLAG_OPERATORS:
            pattern = re.compile(rf"(?<!\S){re.escape(op)}(?!\S)", re.IGNORECASE)
            if pattern.search(remaining):
                name, expected = FLAG_OPERATORS[op]
                query.add(FLAG, (name,), expected)
        else:
            pattern = re.compile(rf"(?<!\S){re.escape(op)}{VALUE}", re.IGNORECASE)
            for match in pattern.finditer(remaining):
                value = match.group(1)
                if len(value) > 1 and value.startswith('"') and value.endswith('"'):
                    value = value[1:-1]
                if value:
                    _valued(query, op, value, now)
        remaining = pattern.sub(" ", remaining)

    remaining = re.sub(r"\bAND\b", " ", remaining, flags=re.IGNORECASE)
    remaining = re.sub(r"\bOR\b", " ", remaining, flags=re.IGNORECASE)

    negation = re.compile(r"\bNOT\s+(\S+)", re.IGNORECASE)
    for match in negation.finditer(remaining):
        query.add(NOT_CONTAINS, NEGATED_FIELDS, match.group(1))
    remaining = negation.sub(" ", remaining)

    for word in remaining.split():
        query.add(CONTAINS, FREE_TEXT_FIELDS, word)
    return query


# -----------------------------------------------------------------------------
# Search Entry Point
# -----------------------------------------------------------------------------

class EmailSearch:
    """Local (optionally hybrid) email search plus saved searches."""

    def __init__(self, emails: RecordStore[EmailRecord], saved: SavedSearchStore):
        self._emails = emails
        self._saved = saved

    async def search_emails(
        self,
        session: GoogleSession,
        query: str,
        limit: int = 50,
        offset: int = 0,
        search_remote: bool = False,
    ) -> SearchResult:
        account_id = session.account_id
        compiled = translate(query)
        local = self._emails.query(
            account_id, where=[compiled.matches], order_by="date", descending=True, limit=limit, offset=offset
        )
        result = SearchResult(
            emails=[record.summary() for record in local],
            total=self._emails.count(account_id, where=[compiled.matches]),
            source="local",
            query=query,
        )

        if search_remote:
            await self._search_remote(session, query, limit, {r.id for r in local}, result)

        logger.info('Search "%s" returned %d results (%s)', query, len(result.emails), result.source)
        return result

    async def _search_remote(
        self, session: GoogleSession, query: str, limit: int, local_ids: set[str], result: SearchResult
    ) -> None:
        """Ask Gmail too and pull in up to MAX_REMOTE_FETCH messages we don't have."""
        account_id = session.account_id
        gmail = session.gmail
        try:
            response = await session.client.execute(
                lambda: gmail.users().messages().list(userId="me", q=query, maxResults=limit)
            )
        except HttpError as e:
            logger.warning("Gmail API search failed: %s", e)
            result.remote_error = str(e)
            return

        remote_ids = [m["id"] for m in response.get("messages", [])]
        missing = [msg_id for msg_id in remote_ids if msg_id not in local_ids]
        if not missing:
            return

        logger.info("Found %d emails in Gmail not in the local cache", len(missing))
        for msg_id in missing[:MAX_REMOTE_FETCH]:
            try:
                msg = await session.client.execute(
                    lambda: gmail.users().messages().get(userId="me", id=msg_id, format="full")
                )
            except HttpError as e:
                logger.warning("Failed to fetch message %s: %s", msg_id, e)
                continue
            record = parse_message(msg)
            self._emails.upsert(account_id, record)
            result.emails.append(record.summary())

        result.remote_total = response.get("resultSizeEstimate", len(remote_ids))
        result.source = "hybrid"

    # -------------------------------------------------------------------------
    # Saved Searches
    # -------------------------------------------------------------------------

    def save_search(self, account_id: str, name: str, query: str, is_favorite: bool = False) -> SavedSearch:
        return self._saved.save(account_id, name, query, is_favorite)

    def get_saved_searches(self, account_id: str, favorites_only: bool = False, limit: int = 50) -> list[SavedSearch]:
        return self._saved.list_searches(account_id, favorites_only=favorites_only, limit=limit)

    def update_saved_search(self, search_id: str, **updates) -> SavedSearch:
        return self._saved.update(search_id, **updates)

    def delete_saved_search(self, search_id: str) -> bool:
        return self._saved.delete(search_id)

    def record_search_usage(self, search_id: str) -> SavedSearch:
        return self._saved.record_usage(search_id)

    def get_recent_searches(self, account_id: str, limit: int = 10) -> list[SavedSearch]:
        return self._saved.recent(account_id, limit)
