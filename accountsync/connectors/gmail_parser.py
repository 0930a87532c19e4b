"""
Normalize Gmail API message resources into EmailRecords.
"""
import base64
import binascii
import json
from email.utils import getaddresses, parseaddr
from typing import Iterator, Optional

from accountsync.labels import apply_label_delta
from accountsync.models.email import EmailRecord
from accountsync.store.cursors import now_millis


def parse_message(msg: dict) -> EmailRecord:
    """Parse a Gmail API message (full or metadata format) into an EmailRecord."""
    payload = msg.get("payload", {})
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    from_name, from_email = parseaddr(headers.get("from", ""))

    body_text, body_html = _extract_body(payload)

    record = EmailRecord(
        id=msg["id"],
        thread_id=msg.get("threadId"),
        message_id=headers.get("message-id"),
        subject=headers.get("subject", ""),
        snippet=msg.get("snippet", ""),
        from_email=from_email or None,
        from_name=from_name or None,
        to_emails=_split_addresses(headers.get("to", "")),
        cc_emails=_split_addresses(headers.get("cc", "")),
        date=int(msg["internalDate"]) if msg.get("internalDate") else None,
        body_text=body_text,
        body_html=body_html,
        labels=msg.get("labelIds", []),
        has_attachments=any(True for _ in iter_attachments(payload)),
        raw_payload=json.dumps(msg, separators=(",", ":")),
        synced_at=now_millis(),
    )
    # Flags come from the labels, never from the constructor
    return apply_label_delta(record)


def iter_attachments(payload: dict) -> Iterator[dict]:
    """Walk the MIME tree and yield one descriptor per attached file."""
    for part in payload.get("parts", []):
        if part.get("filename"):
            body = part.get("body", {})
            yield {
                "part_id": part.get("partId"),
                "filename": part["filename"],
                "mime_type": part.get("mimeType", "application/octet-stream"),
                "size": body.get("size", 0),
                "attachment_id": body.get("attachmentId"),
            }
        if "parts" in part:
            yield from iter_attachments(part)


def iter_inline_images(part: dict) -> Iterator[dict]:
    """Walk the MIME tree for images referenced by Content-ID (cid: links in the HTML)."""
    headers = {h.get("name", "").lower(): h.get("value", "") for h in part.get("headers", [])}
    content_id = headers.get("content-id")
    if content_id and part.get("mimeType", "").startswith("image/"):
        body = part.get("body", {})
        yield {
            "content_id": content_id,
            "mime_type": part["mimeType"],
            "filename": part.get("filename") or "inline-image",
            "size": body.get("size", 0),
            "attachment_id": body.get("attachmentId"),
            "data": body.get("data"),
        }
    for child in part.get("parts", []):
        yield from iter_inline_images(child)


def decode_body(data: Optional[str]) -> bytes:
    """Decode Gmail's base64url body data, tolerating missing padding."""
    if not data:
        return b""
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return b""


def _split_addresses(value: str) -> list[str]:
    """Addresses only, display names dropped."""
    if not value:
        return []
    return [addr for _, addr in getaddresses([value]) if addr]


def _extract_body(payload: dict) -> tuple[str, str]:
    """Extract plain and HTML body from message payload."""
    plain, html = "", ""

    def decode(data: str) -> str:
        return decode_body(data).decode("utf-8", errors="replace")

    def extract(parts: list[dict]) -> None:
        nonlocal plain, html
        for part in parts:
            mime = part.get("mimeType", "")
            data = part.get("body", {}).get("data", "")
            if part.get("filename"):
                continue
            if mime == "text/plain" and not plain:
                plain = decode(data)
            elif mime == "text/html" and not html:
                html = decode(data)
            elif "parts" in part:
                extract(part["parts"])

    if "parts" in payload:
        extract(payload["parts"])
    else:
        data = payload.get("body", {}).get("data", "")
        mime = payload.get("mimeType", "")
        decoded = decode(data)
        if mime == "text/plain":
            plain = decoded
        elif mime == "text/html":
            html = decoded

    return plain, html
