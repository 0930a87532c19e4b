"""
Email data model for cached Gmail messages.
"""
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from accountsync.labels import LabelEncoding, apply_label_delta, derive_flags, parse_labels, serialize_labels


logger = logging.getLogger(__name__)


class EmailRecord(BaseModel):
    """A Gmail message as held in the local cache."""

    id: str = Field(description="Unique Gmail message ID")
    thread_id: Optional[str] = Field(default=None, description="Thread ID this message belongs to")
    message_id: Optional[str] = Field(default=None, description="RFC 2822 Message-ID header")
    subject: str = Field(default="", description="Email subject line")
    snippet: str = Field(default="", description="Short snippet preview of the email")
    from_email: Optional[str] = Field(default=None, description="Sender address")
    from_name: Optional[str] = Field(default=None, description="Sender display name")
    to_emails: list[str] = Field(default_factory=list, description="To addresses")
    cc_emails: list[str] = Field(default_factory=list, description="CC addresses")
    date: Optional[int] = Field(default=None, description="Internal date, epoch millis")
    body_text: str = Field(default="", description="Plain text body")
    body_html: str = Field(default="", description="HTML body")
    labels: list[str] = Field(default_factory=list, description="Gmail label IDs applied to this message")
    is_read: bool = Field(default=True, description="Derived: UNREAD not in labels")
    is_starred: bool = Field(default=False, description="Derived: STARRED in labels")
    has_attachments: bool = Field(default=False)
    raw_payload: Optional[str] = Field(default=None, description="Full provider response as JSON")
    synced_at: Optional[int] = Field(default=None, description="Last time the record was written, epoch millis")

    @field_validator("labels", mode="before")
    @classmethod
    def accept_legacy_labels(cls, v: Any) -> list[str]:
        """Accept a JSON array string, a comma-joined string or a list."""
        labels, encoding = parse_labels(v)
        if encoding is LabelEncoding.CSV:
            logger.debug("Normalized comma-joined labels %r", v)
        return labels

    @field_validator("to_emails", "cc_emails", mode="before")
    @classmethod
    def split_addresses(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if v.startswith("["):
                try:
                    return list(json.loads(v))
                except ValueError:
                    pass
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        return v

    @field_serializer("labels", when_used="json")
    def write_canonical_labels(self, labels: list[str]) -> str:
        return serialize_labels(labels)

    @classmethod
    def from_row(cls, row: dict) -> "EmailRecord":
        """Rehydrate a cached row; flags are re-derived from the labels."""
        record = cls.model_validate(row)
        if derive_flags(record.labels) != (record.is_read, record.is_starred):
            record = apply_label_delta(record)
        return record

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    def payload(self) -> dict:
        """Parsed raw payload, or an empty dict if it is missing or malformed."""
        if not self.raw_payload:
            return {}
        try:
            data = json.loads(self.raw_payload)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def header(self, name: str) -> Optional[str]:
        """Look up a header from the raw payload (case-insensitive)."""
        wanted = name.lower()
        for item in self.payload().get("payload", {}).get("headers", []):
            if item.get("name", "").lower() == wanted:
                return item.get("value")
        return None

    def summary(self) -> dict:
        """Listing form: everything except the raw payload."""
        return self.model_dump(exclude={"raw_payload"})

    def __str__(self) -> str:
        return f"EmailRecord(id={self.id}, subject={self.subject[:50]}..., from={self.from_email})"

    def __repr__(self) -> str:
        return self.__str__()
