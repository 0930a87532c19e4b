"""
Gmail sync: full listing or history-based incremental passes.
"""
import logging
from typing import Optional

from googleapiclient.errors import HttpError

from accountsync.config import DEFAULT_MAIL_MAX_RESULTS
from accountsync.connectors.gmail_parser import parse_message
from accountsync.connectors.google_session import GoogleSession
from accountsync.errors import http_status
from accountsync.events import COMPLETED, FAILED, PROGRESS, STARTED, EventChannel, LoggingEventChannel, Publisher
from accountsync.labels import replace_labels
from accountsync.models.account import SyncType
from accountsync.models.email import EmailRecord
from accountsync.models.results import SyncResult
from accountsync.store.cache_store import RecordStore
from accountsync.store.cursors import SyncCursorTracker


logger = logging.getLogger(__name__)

MAX_RESULTS_PER_PAGE = 100
PROGRESS_EVERY = 10


class MailSyncCoordinator:
    """
    Keeps the local email cache in step with Gmail.

    With a stored history id and `full=False` the pass is incremental (one
    history.list call). Otherwise the mailbox is listed from the top and the
    profile's current history id becomes the new baseline.
    """

    def __init__(
        self,
        emails: RecordStore[EmailRecord],
        cursors: SyncCursorTracker,
        events: Optional[EventChannel] = None,
    ):
        self._emails = emails
        self._cursors = cursors
        self._publish = Publisher(events or LoggingEventChannel(), SyncType.MAIL)

    async def sync(
        self,
        session: GoogleSession,
        full: bool = False,
        max_results: int = DEFAULT_MAIL_MAX_RESULTS,
    ) -> SyncResult:
        account_id = session.account_id
        cursor = self._cursors.get(account_id, SyncType.MAIL)
        incremental = not full and cursor is not None and cursor.last_cursor is not None
        mode = "incremental" if incremental else "full"
        self._publish(STARTED, account_id, f"{mode} mail sync")

        try:
            if incremental:
                result = await self._incremental_sync(session, cursor.last_cursor)
            else:
                result = await self._full_sync(session, max_results)
        except Exception as e:
            self._publish(FAILED, account_id, str(e), error=str(e))
            raise

        self._publish(COMPLETED, account_id, f"{result.synced} emails ({result.type})", synced=result.synced)
        return result

    async def fetch_message(self, session: GoogleSession, msg_id: str, message_format: str = "full") -> dict:
        """Fetch a single message resource in the requested Gmail format."""
        gmail = session.gmail
        return await session.client.execute(
            lambda: gmail.users().messages().get(userId="me", id=msg_id, format=message_format)
        )

    async def _full_sync(self, session: GoogleSession, max_results: int) -> SyncResult:
        account_id = session.account_id
        gmail = session.gmail
        synced = 0
        page_token = None

        while synced < max_results:
            params = {"userId": "me", "maxResults": min(max_results - synced, MAX_RESULTS_PER_PAGE)}
            if page_token:
                params["pageToken"] = page_token
            response = await session.client.execute(lambda: gmail.users().messages().list(**params))

            for ref in response.get("messages", []):
                if synced >= max_results:
                    break
                msg = await self.fetch_message(session, ref["id"], "full")
                self._emails.upsert(account_id, parse_message(msg))
                synced += 1
                if synced % PROGRESS_EVERY == 0:
                    self._publish(PROGRESS, account_id, f"Synced {synced} emails...", synced=synced)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        profile = await session.client.execute(lambda: gmail.users().getProfile(userId="me"))
        self._cursors.set(account_id, SyncType.MAIL, profile.get("historyId"))
        logger.info("Full mail sync complete for %s: %d emails", account_id, synced)
        return SyncResult(synced=synced, type="full")

    async def _incremental_sync(self, session: GoogleSession, start_history_id: str) -> SyncResult:
        account_id = session.account_id
        gmail = session.gmail
        changed = 0

        response = await session.client.execute(
            lambda: gmail.users().history().list(userId="me", startHistoryId=start_history_id)
        )

        for record in response.get("history", []):
            for added in record.get("messagesAdded", []):
                msg = await self._fetch_existing(session, added["message"]["id"], "full")
                if msg is not None:
                    self._emails.upsert(account_id, parse_message(msg))
                changed += 1

            for deleted in record.get("messagesDeleted", []):
                self._emails.delete(account_id, deleted["message"]["id"])
                changed += 1

            for change in record.get("labelsAdded", []) + record.get("labelsRemoved", []):
                msg = await self._fetch_existing(session, change["message"]["id"], "metadata")
                if msg is not None:
                    self._update_labels(account_id, msg["id"], msg.get("labelIds", []))
                changed += 1

        if response.get("historyId"):
            self._cursors.set(account_id, SyncType.MAIL, response["historyId"])
        logger.info("Incremental mail sync complete for %s: %d changes", account_id, changed)
        return SyncResult(synced=changed, type="incremental")

    async def _fetch_existing(self, session: GoogleSession, msg_id: str, message_format: str) -> Optional[dict]:
        """Fetch a message named in history; None (and the cached row dropped) if it is gone."""
        try:
            return await self.fetch_message(session, msg_id, message_format)
        except HttpError as e:
            if http_status(e) != 404:
                raise
        logger.info("Message %s no longer exists, dropping it from the cache", msg_id)
        self._emails.delete(session.account_id, msg_id)
        return None

    def _update_labels(self, account_id: str, msg_id: str, labels: list[str]) -> None:
        """Refresh only the label projection of a cached message."""
        record = self._emails.get(account_id, msg_id)
        if record is None:
            logger.debug("Label change for uncached message %s ignored", msg_id)
            return
        self._emails.upsert(account_id, replace_labels(record, labels))
