"""
Calendar models.
"""
import json
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def to_epoch_millis(value: Optional[str]) -> Optional[int]:
    """Epoch millis for an RFC 3339 timestamp or an all-day YYYY-MM-DD date."""
    if not value:
        return None
    if len(value) == 10:
        day = date.fromisoformat(value)
        moment = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    else:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def to_iso(epoch_millis: int) -> str:
    return datetime.fromtimestamp(epoch_millis / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class CalendarRecord(BaseModel):
    """A calendar the account can see, plus whether we sync it."""

    id: str
    calendar_id: str
    summary: str = ""
    description: Optional[str] = None
    time_zone: Optional[str] = None
    background_color: Optional[str] = None
    access_role: Optional[str] = None
    is_primary: bool = False
    is_selected: bool = True
    raw_payload: Optional[str] = None

    @classmethod
    def from_api(cls, account_id: str, calendar: dict, is_selected: bool = True) -> "CalendarRecord":
        return cls(
            id=f"{account_id}_{calendar['id']}",
            calendar_id=calendar["id"],
            summary=calendar.get("summary", ""),
            description=calendar.get("description"),
            time_zone=calendar.get("timeZone"),
            background_color=calendar.get("backgroundColor"),
            access_role=calendar.get("accessRole"),
            is_primary=bool(calendar.get("primary")),
            is_selected=is_selected,
            raw_payload=json.dumps(calendar, separators=(",", ":")),
        )


class CalendarEventRecord(BaseModel):
    """A calendar event as held in the local cache."""

    id: str
    calendar_id: str = "primary"
    summary: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[int] = Field(default=None, description="Epoch millis")
    end_time: Optional[int] = Field(default=None, description="Epoch millis")
    all_day: bool = False
    status: Optional[str] = None
    attendees: list[dict[str, Any]] = Field(default_factory=list)
    organizer_email: Optional[str] = None
    recurrence: list[str] = Field(default_factory=list)
    reminders: dict[str, Any] = Field(default_factory=dict)
    raw_payload: Optional[str] = None
    synced_at: Optional[int] = None

    @classmethod
    def from_api(cls, calendar_id: str, event: dict) -> "CalendarEventRecord":
        start = event.get("start", {})
        end = event.get("end", {})
        return cls(
            id=event["id"],
            calendar_id=calendar_id,
            summary=event.get("summary", ""),
            description=event.get("description"),
            location=event.get("location"),
            start_time=to_epoch_millis(start.get("dateTime") or start.get("date")),
            end_time=to_epoch_millis(end.get("dateTime") or end.get("date")),
            all_day="dateTime" not in start,
            status=event.get("status"),
            attendees=event.get("attendees", []),
            organizer_email=event.get("organizer", {}).get("email"),
            recurrence=event.get("recurrence", []),
            reminders=event.get("reminders", {}),
            raw_payload=json.dumps(event, separators=(",", ":")),
        )

    def to_event(self) -> dict:
        """Calendar API shaped dict, preferring the raw payload where present."""
        raw: dict = {}
        if self.raw_payload:
            try:
                raw = json.loads(self.raw_payload)
            except ValueError:
                raw = {}
        if not isinstance(raw, dict):
            raw = {}

        def moment(epoch_millis: Optional[int]) -> dict:
            if epoch_millis is None:
                return {}
            if self.all_day:
                return {"date": to_iso(epoch_millis)[:10]}
            return {"dateTime": to_iso(epoch_millis)}

        return {
            "id": self.id,
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "start": raw.get("start") or moment(self.start_time),
            "end": raw.get("end") or moment(self.end_time),
            "status": self.status,
            "attendees": self.attendees,
            "organizer": raw.get("organizer") or {"email": self.organizer_email},
            "htmlLink": raw.get("htmlLink"),
            "recurringEventId": raw.get("recurringEventId"),
            "recurrence": self.recurrence,
        }
