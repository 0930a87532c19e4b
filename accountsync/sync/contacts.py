"""
People API contact sync.
"""
import logging
from typing import Optional

from accountsync.config import DEFAULT_CONTACTS_PAGE_SIZE
from accountsync.connectors.google_session import GoogleSession
from accountsync.events import COMPLETED, FAILED, PROGRESS, STARTED, EventChannel, LoggingEventChannel, Publisher
from accountsync.models.account import SyncType
from accountsync.models.contact import PERSON_FIELDS, ContactRecord
from accountsync.models.results import SyncResult
from accountsync.store.cache_store import RecordStore
from accountsync.store.cursors import SyncCursorTracker, now_millis


logger = logging.getLogger(__name__)


class ContactsSyncCoordinator:
    def __init__(
        self,
        contacts: RecordStore[ContactRecord],
        cursors: SyncCursorTracker,
        events: Optional[EventChannel] = None,
    ):
        self._contacts = contacts
        self._cursors = cursors
        self._publish = Publisher(events or LoggingEventChannel(), SyncType.CONTACTS)

    async def sync(self, session: GoogleSession, page_size: int = DEFAULT_CONTACTS_PAGE_SIZE) -> SyncResult:
        """Walk every connections page and fully replace each cached contact."""
        account_id = session.account_id
        people = session.people
        self._publish(STARTED, account_id, "contacts sync")

        synced = 0
        page_token = None
        sync_token = None
        try:
            while True:
                params = {
                    "resourceName": "people/me",
                    "pageSize": page_size,
                    "personFields": PERSON_FIELDS,
                }
                if page_token:
                    params["pageToken"] = page_token
                response = await session.client.execute(lambda: people.people().connections().list(**params))

                connections = response.get("connections", [])
                for person in connections:
                    record = ContactRecord.from_person(person)
                    self._contacts.upsert(account_id, record.model_copy(update={"synced_at": now_millis()}))
                    synced += 1
                self._publish(PROGRESS, account_id, f"Fetched {len(connections)} contacts", synced=synced)

                sync_token = response.get("nextSyncToken") or sync_token
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except Exception as e:
            self._publish(FAILED, account_id, str(e))
            raise

        self._cursors.set(account_id, SyncType.CONTACTS, sync_token)
        self._publish(COMPLETED, account_id, f"{synced} contacts", synced=synced)
        return SyncResult(synced=synced, type="full")

    def get_contacts(
        self,
        account_id: str,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict]:
        """Cached contacts in People API form, ordered by display name."""
        where = []
        if search:
            needle = search.lower()
            where.append(
                lambda c: needle in (c.display_name or "").lower() or needle in (c.email or "").lower()
            )
        records = self._contacts.query(account_id, where=where, order_by="display_name", limit=limit, offset=offset)
        return [record.to_person() for record in records]

    def get_contact(self, account_id: str, contact_id: str) -> ContactRecord:
        return self._contacts.require(account_id, contact_id)
