"""
AccountService - the caller-facing facade.

Holds one GoogleSession per linked account and routes every operation to
the coordinator that owns it. Sync passes are guarded so the same account
never runs two overlapping passes of the same type.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from accountsync.batch import BatchCoordinator
from accountsync.config import Settings
from accountsync.connectors.google_session import FileTokenSession, GoogleSession, TokenSession
from accountsync.errors import SyncInProgressError
from accountsync.events import EventChannel, LoggingEventChannel
from accountsync.mailbox import Mailbox
from accountsync.models.account import Account, SyncType
from accountsync.models.compose import ComposedMessage
from accountsync.models.contact import ContactRecord
from accountsync.models.email import EmailRecord
from accountsync.models.results import (
    BatchDeleteResult,
    BatchModifyResult,
    BatchTrashResult,
    CalendarSyncResult,
    SavedSearch,
    SearchResult,
    SyncResult,
)
from accountsync.models.templates import EmailTemplate, Signature
from accountsync.search import EmailSearch
from accountsync.store import CacheStores
from accountsync.sync.calendar import PRIMARY, CalendarSyncCoordinator
from accountsync.sync.contacts import ContactsSyncCoordinator
from accountsync.sync.mail import MailSyncCoordinator


logger = logging.getLogger(__name__)

SessionFactory = Callable[[Account], GoogleSession]


class SyncGuard:
    """One lock per (account, sync type). A second caller is refused, not queued."""

    def __init__(self):
        self._locks: dict[tuple[str, SyncType], asyncio.Lock] = {}

    def is_running(self, account_id: str, sync_type: SyncType) -> bool:
        lock = self._locks.get((account_id, sync_type))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, account_id: str, sync_type: SyncType):
        lock = self._locks.setdefault((account_id, sync_type), asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(account_id, sync_type.value)
        async with lock:
            yield


class AccountService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        stores: Optional[CacheStores] = None,
        tokens: Optional[TokenSession] = None,
        events: Optional[EventChannel] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.stores = stores or CacheStores.open(self.settings.cache_dir)
        self._tokens = tokens or FileTokenSession(
            str(self.settings.credentials_path), str(self.settings.token_dir)
        )
        self._session_factory = session_factory or self._default_session
        self._sessions: dict[str, GoogleSession] = {}
        self.guard = SyncGuard()

        channel = events or LoggingEventChannel()
        self.mail = MailSyncCoordinator(self.stores.emails, self.stores.cursors, channel)
        self.calendar = CalendarSyncCoordinator(
            self.stores.events, self.stores.calendars, self.stores.cursors, channel
        )
        self.contacts = ContactsSyncCoordinator(self.stores.contacts, self.stores.cursors, channel)
        self.mailbox = Mailbox(self.stores.emails)
        self.batch = BatchCoordinator(
            self.stores.emails, self.settings.batch_chunk_size, self.settings.batch_concurrency
        )
        self.search = EmailSearch(self.stores.emails, self.stores.saved_searches)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> "AccountService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def close(self) -> None:
        self.stores.close()

    # -------------------------------------------------------------------------
    # Accounts & Sessions
    # -------------------------------------------------------------------------

    def _default_session(self, account: Account) -> GoogleSession:
        return GoogleSession(account, self._tokens, max_retries=self.settings.max_retries)

    def session(self, account_id: str) -> GoogleSession:
        """The GoogleSession for an account, created on first use."""
        if account_id not in self._sessions:
            account = self.stores.accounts.get_account(account_id)
            self._sessions[account_id] = self._session_factory(account)
        return self._sessions[account_id]

    async def _ready(self, account_id: str) -> GoogleSession:
        session = self.session(account_id)
        await session.ensure_valid_token()
        return session

    def add_account(self, email: str, display_name: Optional[str] = None) -> Account:
        return self.stores.accounts.add_account(email, display_name)

    def remove_account(self, account_id: str) -> bool:
        """Unlink an account and drop everything cached for it."""
        for store in (self.stores.emails, self.stores.events, self.stores.calendars, self.stores.contacts):
            store.clear_account(account_id)
        for sync_type in SyncType:
            self.stores.cursors.clear(account_id, sync_type)
        self.stores.templates.clear_account(account_id)
        self.stores.signatures.clear_account(account_id)
        self._sessions.pop(account_id, None)
        return self.stores.accounts.remove_account(account_id)

    def get_account(self, account_id: str) -> Account:
        return self.stores.accounts.get_account(account_id)

    def list_accounts(self) -> list[Account]:
        return self.stores.accounts.list_accounts()

    def find_account(self, email: str) -> Optional[Account]:
        return self.stores.accounts.find_by_email(email)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def sync_emails(self, account_id: str, full: bool = False, max_results: Optional[int] = None) -> SyncResult:
        async with self.guard.hold(account_id, SyncType.MAIL):
            session = await self._ready(account_id)
            return await self.mail.sync(session, full=full, max_results=max_results or self.settings.mail_max_results)

    async def sync_calendar(
        self,
        account_id: str,
        calendar_id: str = PRIMARY,
        max_results: Optional[int] = None,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
    ) -> SyncResult:
        async with self.guard.hold(account_id, SyncType.CALENDAR):
            session = await self._ready(account_id)
            return await self.calendar.sync(
                session,
                calendar_id=calendar_id,
                max_results=max_results or self.settings.calendar_max_results,
                time_min=time_min,
                time_max=time_max,
            )

    async def sync_all_calendars(self, account_id: str) -> CalendarSyncResult:
        async with self.guard.hold(account_id, SyncType.CALENDAR):
            session = await self._ready(account_id)
            return await self.calendar.sync_all_calendars(session)

    async def sync_contacts(self, account_id: str, page_size: Optional[int] = None) -> SyncResult:
        async with self.guard.hold(account_id, SyncType.CONTACTS):
            session = await self._ready(account_id)
            return await self.contacts.sync(session, page_size=page_size or self.settings.contacts_page_size)

    async def sync_all(self, account_id: str) -> dict[str, Any]:
        """Mail, calendar and contacts concurrently; a failure in one doesn't cancel the others."""
        results = await asyncio.gather(
            self.sync_emails(account_id),
            self.sync_calendar(account_id),
            self.sync_contacts(account_id),
            return_exceptions=True,
        )
        summary = {}
        for name, result in zip(("emails", "calendar", "contacts"), results):
            if isinstance(result, BaseException):
                logger.error("%s sync failed for %s: %s", name, account_id, result)
                summary[name] = {"error": str(result)}
            else:
                summary[name] = result
        return summary

    def get_sync_status(self, account_id: str) -> dict[str, Optional[dict]]:
        status = {}
        for sync_type, cursor in self.stores.cursors.for_account(account_id).items():
            state = cursor.model_dump(mode="json") if cursor else None
            if state is not None:
                state["running"] = self.guard.is_running(account_id, sync_type)
            status[sync_type.value] = state
        return status

    # -------------------------------------------------------------------------
    # Mail
    # -------------------------------------------------------------------------

    def get_emails(self, account_id: str, **filters) -> list[dict]:
        return self.mailbox.get_emails(account_id, **filters)

    def get_email(self, account_id: str, email_id: str) -> EmailRecord:
        return self.mailbox.get_email(account_id, email_id)

    async def send_email(self, account_id: str, message: ComposedMessage) -> dict:
        return await self.mailbox.send_email(await self._ready(account_id), message)

    async def reply_to_email(self, account_id: str, email_id: str, body: str, body_html: Optional[str] = None) -> dict:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.reply_to_email(await self._ready(account_id), email_id, body, body_html)

    async def forward_email(self, account_id: str, email_id: str, to: str, body: str = "") -> dict:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.forward_email(await self._ready(account_id), email_id, to, body)

    async def trash_email(self, account_id: str, email_id: str) -> EmailRecord:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.trash_email(await self._ready(account_id), email_id)

    async def delete_email(self, account_id: str, email_id: str) -> None:
        self.mailbox.get_email(account_id, email_id)
        await self.mailbox.delete_email(await self._ready(account_id), email_id)

    async def mark_as_read(self, account_id: str, email_id: str, is_read: bool = True) -> EmailRecord:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.mark_as_read(await self._ready(account_id), email_id, is_read)

    async def toggle_star(self, account_id: str, email_id: str, is_starred: bool) -> EmailRecord:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.toggle_star(await self._ready(account_id), email_id, is_starred)

    async def apply_label(self, account_id: str, email_id: str, label_id: str) -> EmailRecord:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.apply_label(await self._ready(account_id), email_id, label_id)

    async def remove_label(self, account_id: str, email_id: str, label_id: str) -> EmailRecord:
        self.mailbox.get_email(account_id, email_id)
        return await self.mailbox.remove_label(await self._ready(account_id), email_id, label_id)

    async def batch_modify_emails(self, account_id: str, ids: list[str], **modifications) -> BatchModifyResult:
        if not ids:
            return BatchModifyResult(modified=0)
        return await self.batch.batch_modify(await self._ready(account_id), ids, **modifications)

    async def batch_trash_emails(self, account_id: str, ids: list[str]) -> BatchTrashResult:
        if not ids:
            return BatchTrashResult(trashed=0)
        return await self.batch.batch_trash(await self._ready(account_id), ids)

    async def batch_delete_emails(self, account_id: str, ids: list[str]) -> BatchDeleteResult:
        if not ids:
            return BatchDeleteResult(deleted=0)
        return await self.batch.batch_delete(await self._ready(account_id), ids)

    async def get_labels(self, account_id: str) -> list[dict]:
        return await self.mailbox.get_labels(await self._ready(account_id))

    async def get_label(self, account_id: str, label_id: str) -> dict:
        return await self.mailbox.get_label(await self._ready(account_id), label_id)

    async def create_label(self, account_id: str, name: str, color: Optional[dict] = None) -> dict:
        return await self.mailbox.create_label(await self._ready(account_id), name, color)

    async def update_label(
        self, account_id: str, label_id: str, name: Optional[str] = None, color: Optional[dict] = None
    ) -> dict:
        return await self.mailbox.update_label(await self._ready(account_id), label_id, name, color)

    async def delete_label(self, account_id: str, label_id: str) -> None:
        await self.mailbox.delete_label(await self._ready(account_id), label_id)

    async def get_attachments(self, account_id: str, message_id: str) -> list[dict]:
        return await self.mailbox.get_attachments(await self._ready(account_id), message_id)

    async def download_attachment(self, account_id: str, message_id: str, attachment_id: str, filename: str) -> dict:
        return await self.mailbox.download_attachment(await self._ready(account_id), message_id, attachment_id, filename)

    async def get_inline_images(self, account_id: str, message_id: str) -> list[dict]:
        return await self.mailbox.get_inline_images(await self._ready(account_id), message_id)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search_emails(
        self, account_id: str, query: str, limit: int = 50, offset: int = 0, search_remote: bool = False
    ) -> SearchResult:
        session = await self._ready(account_id) if search_remote else self.session(account_id)
        return await self.search.search_emails(session, query, limit, offset, search_remote)

    def save_search(self, account_id: str, name: str, query: str, is_favorite: bool = False) -> SavedSearch:
        return self.search.save_search(account_id, name, query, is_favorite)

    def get_saved_searches(self, account_id: str, favorites_only: bool = False, limit: int = 50) -> list[SavedSearch]:
        return self.search.get_saved_searches(account_id, favorites_only, limit)

    def update_saved_search(self, search_id: str, **updates) -> SavedSearch:
        return self.search.update_saved_search(search_id, **updates)

    def delete_saved_search(self, search_id: str) -> bool:
        return self.search.delete_saved_search(search_id)

    def record_search_usage(self, search_id: str) -> SavedSearch:
        return self.search.record_search_usage(search_id)

    def get_recent_searches(self, account_id: str, limit: int = 10) -> list[SavedSearch]:
        return self.search.get_recent_searches(account_id, limit)

    # -------------------------------------------------------------------------
    # Templates & Signatures
    # -------------------------------------------------------------------------

    def get_templates(
        self, account_id: Optional[str] = None, category: Optional[str] = None, favorites_only: bool = False
    ) -> list[EmailTemplate]:
        return self.stores.templates.list_templates(account_id, category, favorites_only)

    def get_template(self, template_id: str) -> EmailTemplate:
        return self.stores.templates.get(template_id)

    def create_template(self, name: str, **fields) -> EmailTemplate:
        return self.stores.templates.create(name, **fields)

    def update_template(self, template_id: str, **updates) -> EmailTemplate:
        return self.stores.templates.update(template_id, **updates)

    def delete_template(self, template_id: str) -> None:
        self.stores.templates.delete(template_id)

    def increment_template_usage(self, template_id: str) -> EmailTemplate:
        return self.stores.templates.increment_usage(template_id)

    def toggle_template_favorite(self, template_id: str) -> EmailTemplate:
        return self.stores.templates.toggle_favorite(template_id)

    def get_template_categories(self, account_id: Optional[str] = None) -> list[str]:
        return self.stores.templates.categories(account_id)

    def get_signatures(self, account_id: str) -> list[Signature]:
        return self.stores.signatures.list_signatures(account_id)

    def get_signature(self, signature_id: str) -> Signature:
        return self.stores.signatures.get(signature_id)

    def create_signature(self, account_id: str, name: str, content: str, **flags) -> Signature:
        return self.stores.signatures.create(account_id, name, content, **flags)

    def update_signature(self, signature_id: str, **updates) -> Signature:
        return self.stores.signatures.update(signature_id, **updates)

    def delete_signature(self, signature_id: str) -> bool:
        return self.stores.signatures.delete(signature_id)

    def get_default_signature(self, account_id: str, kind: str = "new") -> Optional[Signature]:
        return self.stores.signatures.get_default(account_id, kind)

    def set_default_signature(self, account_id: str, signature_id: str) -> Signature:
        return self.stores.signatures.set_default(account_id, signature_id)

    # -------------------------------------------------------------------------
    # Calendar
    # -------------------------------------------------------------------------

    async def list_calendars(self, account_id: str) -> list:
        return await self.calendar.list_calendars(await self._ready(account_id))

    def toggle_calendar_sync(self, account_id: str, calendar_id: str, is_selected: bool):
        return self.calendar.toggle_calendar_sync(account_id, calendar_id, is_selected)

    async def get_events(
        self,
        account_id: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 100,
        live: bool = False,
    ) -> list[dict]:
        session = await self._ready(account_id) if live else self.session(account_id)
        return await self.calendar.get_events(session, start, end, limit, live)

    async def create_event(self, account_id: str, event: dict, calendar_id: str = PRIMARY) -> dict:
        return await self.calendar.create_event(await self._ready(account_id), event, calendar_id)

    async def update_event(self, account_id: str, event_id: str, updates: dict, calendar_id: str = PRIMARY) -> dict:
        return await self.calendar.update_event(await self._ready(account_id), event_id, updates, calendar_id)

    async def delete_event(self, account_id: str, event_id: str, calendar_id: str = PRIMARY) -> None:
        await self.calendar.delete_event(await self._ready(account_id), event_id, calendar_id)

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    def get_contacts(self, account_id: str, search: Optional[str] = None, limit: int = 100, offset: int = 0) -> list[dict]:
        return self.contacts.get_contacts(account_id, search, limit, offset)

    def get_contact(self, account_id: str, contact_id: str) -> ContactRecord:
        return self.contacts.get_contact(account_id, contact_id)
