from dataclasses import dataclass
from pathlib import Path

from accountsync.models.calendar import CalendarEventRecord, CalendarRecord
from accountsync.models.contact import ContactRecord
from accountsync.models.email import EmailRecord
from accountsync.store.accounts import AccountRegistry
from accountsync.store.cache_store import RecordStore
from accountsync.store.cursors import SyncCursorTracker
from accountsync.store.saved_searches import SavedSearchStore
from accountsync.store.signatures import SignatureStore
from accountsync.store.templates import TemplateStore


@dataclass
class CacheStores:
    """Every on-disk store the engine uses, rooted at one directory."""

    emails: RecordStore[EmailRecord]
    events: RecordStore[CalendarEventRecord]
    calendars: RecordStore[CalendarRecord]
    contacts: RecordStore[ContactRecord]
    cursors: SyncCursorTracker
    accounts: AccountRegistry
    saved_searches: SavedSearchStore
    templates: TemplateStore
    signatures: SignatureStore

    @classmethod
    def open(cls, root: Path) -> "CacheStores":
        root = Path(root)
        return cls(
            emails=RecordStore(root / "emails", EmailRecord, "Email"),
            events=RecordStore(root / "events", CalendarEventRecord, "Event"),
            calendars=RecordStore(root / "calendars", CalendarRecord, "Calendar"),
            contacts=RecordStore(root / "contacts", ContactRecord, "Contact"),
            cursors=SyncCursorTracker(root / "cursors"),
            accounts=AccountRegistry(root / "accounts"),
            saved_searches=SavedSearchStore(root / "saved_searches"),
            templates=TemplateStore(root / "templates"),
            signatures=SignatureStore(root / "signatures"),
        )

    def close(self) -> None:
        for store in (
            self.emails, self.events, self.calendars, self.contacts,
            self.cursors, self.accounts, self.saved_searches,
            self.templates, self.signatures,
        ):
            store.close()

    def __enter__(self) -> "CacheStores":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


__all__ = [
    "AccountRegistry",
    "CacheStores",
    "RecordStore",
    "SavedSearchStore",
    "SignatureStore",
    "SyncCursorTracker",
    "TemplateStore",
]
