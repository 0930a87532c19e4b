"""
Google Calendar sync and event operations.
"""
import logging
from typing import Optional

from googleapiclient.errors import HttpError

from accountsync.config import DEFAULT_CALENDAR_MAX_RESULTS
from accountsync.connectors.google_session import GoogleSession
from accountsync.events import COMPLETED, FAILED, STARTED, EventChannel, LoggingEventChannel, Publisher
from accountsync.models.account import SyncType
from accountsync.models.calendar import CalendarEventRecord, CalendarRecord, to_iso
from accountsync.models.results import CalendarSyncResult, SyncResult
from accountsync.store.cache_store import RecordStore
from accountsync.store.cursors import SyncCursorTracker, now_millis


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
# Default sync window: six months back, one year ahead
WINDOW_PAST_DAYS = 6 * 30
WINDOW_FUTURE_DAYS = 365
MAX_EVENTS_PER_PAGE = 250
PRIMARY = "primary"


def default_window(now: Optional[int] = None) -> tuple[str, str]:
    now = now if now is not None else now_millis()
    return to_iso(now - WINDOW_PAST_DAYS * DAY_MS), to_iso(now + WINDOW_FUTURE_DAYS * DAY_MS)


class CalendarSyncCoordinator:
    def __init__(
        self,
        events: RecordStore[CalendarEventRecord],
        calendars: RecordStore[CalendarRecord],
        cursors: SyncCursorTracker,
        channel: Optional[EventChannel] = None,
    ):
        self._events = events
        self._calendars = calendars
        self._cursors = cursors
        self._publish = Publisher(channel or LoggingEventChannel(), SyncType.CALENDAR)

    # -------------------------------------------------------------------------
    # Calendars
    # -------------------------------------------------------------------------

    async def list_calendars(self, session: GoogleSession) -> list[CalendarRecord]:
        """Fetch the calendar list and cache it, keeping each calendar's selection."""
        account_id = session.account_id
        api = session.calendar
        response = await session.client.execute(lambda: api.calendarList().list())

        records = []
        for item in response.get("items", []):
            existing = self._calendars.get(account_id, f"{account_id}_{item['id']}")
            is_selected = existing.is_selected if existing is not None else True
            record = CalendarRecord.from_api(account_id, item, is_selected=is_selected)
            self._calendars.upsert(account_id, record)
            records.append(record)
        return records

    def toggle_calendar_sync(self, account_id: str, calendar_id: str, is_selected: bool) -> CalendarRecord:
        record = self._calendars.require(account_id, f"{account_id}_{calendar_id}")
        record = record.model_copy(update={"is_selected": is_selected})
        self._calendars.upsert(account_id, record)
        return record

    def selected_calendars(self, account_id: str) -> list[CalendarRecord]:
        return self._calendars.query(account_id, where=[lambda c: c.is_selected], order_by="summary")

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def sync(
        self,
        session: GoogleSession,
        calendar_id: str = PRIMARY,
        max_results: int = DEFAULT_CALENDAR_MAX_RESULTS,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
    ) -> SyncResult:
        """Pull every event of one calendar inside the window (default: -180d..+365d)."""
        account_id = session.account_id
        api = session.calendar
        default_min, default_max = default_window()
        time_min = time_min or default_min
        time_max = time_max or default_max
        self._publish(STARTED, account_id, f"{calendar_id} ({time_min} to {time_max})")

        synced = 0
        page_token = None
        sync_token = None
        try:
            while synced < max_results:
                params = {
                    "calendarId": calendar_id,
                    "timeMin": time_min,
                    "timeMax": time_max,
                    "maxResults": min(max_results - synced, MAX_EVENTS_PER_PAGE),
                    "singleEvents": True,
                    "orderBy": "startTime",
                }
                if page_token:
                    params["pageToken"] = page_token
                response = await session.client.execute(lambda: api.events().list(**params))

                for item in response.get("items", [])[: max_results - synced]:
                    self._upsert_event(account_id, calendar_id, item)
                    synced += 1

                sync_token = response.get("nextSyncToken")
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except Exception as e:
            self._publish(FAILED, account_id, str(e), calendar_id=calendar_id)
            raise

        self._cursors.set(account_id, SyncType.CALENDAR, sync_token)
        self._publish(COMPLETED, account_id, f"{synced} events", synced=synced, calendar_id=calendar_id)
        return SyncResult(synced=synced, type="full")

    async def sync_all_calendars(self, session: GoogleSession) -> CalendarSyncResult:
        """Sync every selected calendar; one failing calendar doesn't stop the rest."""
        account_id = session.account_id
        selected = self.selected_calendars(account_id)
        if not selected:
            await self.list_calendars(session)
            selected = self.selected_calendars(account_id)

        total = 0
        results: dict[str, dict] = {}
        for calendar in selected:
            try:
                result = await self.sync(session, calendar_id=calendar.calendar_id)
            except Exception as e:
                logger.error("Calendar %s sync failed: %s", calendar.calendar_id, e)
                results[calendar.calendar_id] = {"error": str(e)}
                continue
            total += result.synced
            results[calendar.calendar_id] = {"synced": result.synced}
        return CalendarSyncResult(total_synced=total, calendars=len(selected), results=results)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _upsert_event(self, account_id: str, calendar_id: str, event: dict) -> CalendarEventRecord:
        record = CalendarEventRecord.from_api(calendar_id, event)
        record = record.model_copy(update={"synced_at": now_millis()})
        self._events.upsert(account_id, record)
        return record

    async def get_events(
        self,
        session: GoogleSession,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 100,
        live: bool = False,
    ) -> list[dict]:
        """
        Events between `start` and `end` (epoch millis).

        With `live=True` the primary calendar is queried directly; if that
        fails the cached events are returned instead.
        """
        account_id = session.account_id
        start = start if start is not None else now_millis()

        if live:
            api = session.calendar
            params = {
                "calendarId": PRIMARY,
                "timeMin": to_iso(start),
                "maxResults": limit,
                "singleEvents": True,
                "orderBy": "startTime",
            }
            if end is not None:
                params["timeMax"] = to_iso(end)
            try:
                response = await session.client.execute(lambda: api.events().list(**params))
            except HttpError as e:
                logger.error("Live calendar fetch failed, falling back to cache: %s", e)
            else:
                return [CalendarEventRecord.from_api(PRIMARY, item).to_event() for item in response.get("items", [])]

        where = [lambda e: e.start_time is not None and e.start_time >= start]
        if end is not None:
            where.append(lambda e: e.start_time <= end)
        records = self._events.query(account_id, where=where, order_by="start_time", limit=limit)
        return [record.to_event() for record in records]

    def get_event(self, account_id: str, event_id: str) -> CalendarEventRecord:
        return self._events.require(account_id, event_id)

    async def create_event(self, session: GoogleSession, event: dict, calendar_id: str = PRIMARY) -> dict:
        api = session.calendar
        created = await session.client.execute(
            lambda: api.events().insert(calendarId=calendar_id, body=event)
        )
        self._upsert_event(session.account_id, calendar_id, created)
        logger.info("Event created: %s", created["id"])
        return created

    async def update_event(
        self, session: GoogleSession, event_id: str, updates: dict, calendar_id: str = PRIMARY
    ) -> dict:
        api = session.calendar
        updated = await session.client.execute(
            lambda: api.events().patch(calendarId=calendar_id, eventId=event_id, body=updates)
        )
        self._upsert_event(session.account_id, calendar_id, updated)
        logger.info("Event updated: %s", event_id)
        return updated

    async def delete_event(self, session: GoogleSession, event_id: str, calendar_id: str = PRIMARY) -> None:
        api = session.calendar
        await session.client.execute(lambda: api.events().delete(calendarId=calendar_id, eventId=event_id))
        self._events.delete(session.account_id, event_id)
        logger.info("Event deleted: %s", event_id)


