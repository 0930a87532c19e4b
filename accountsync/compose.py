"""
Outbound message composition.

Builds RFC 2822 messages with the stdlib email package (CRLF line endings
via policy.SMTP) and encodes them for the Gmail send endpoint.
"""
import base64
import time
import uuid
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage, MIMEPart
from email.utils import format_datetime
from typing import Optional

from accountsync.models.compose import Attachment, ComposedMessage
from accountsync.models.email import EmailRecord


BASE64_LINE_LENGTH = 76
REPLY_PREFIX = "Re: "
FORWARD_PREFIX = "Fwd: "
FORWARD_MARKER = "---------- Forwarded message ---------"


def new_boundary() -> str:
    return f"----=_Part_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def prefix_subject(subject: str, prefix: str) -> str:
    """Add `prefix` unless the subject already starts with it."""
    subject = subject or ""
    return subject if subject.startswith(prefix) else f"{prefix}{subject}"


def wrap_base64(content: str, width: int = BASE64_LINE_LENGTH) -> str:
    """Re-wrap already encoded base64 text at `width` columns."""
    flat = "".join(content.split())
    return "\n".join(flat[i:i + width] for i in range(0, len(flat), width))


def _text_cte(text: str) -> str:
    return "7bit" if text.isascii() else "8bit"


def _text_part(text: str, subtype: str = "plain") -> MIMEPart:
    part = MIMEPart(policy=policy.SMTP)
    part.set_content(text, subtype=subtype, charset="utf-8", cte=_text_cte(text))
    return part


def _attachment_part(attachment: Attachment) -> MIMEPart:
    part = MIMEPart(policy=policy.SMTP)
    part["Content-Type"] = f'{attachment.mime_type}; name="{attachment.filename}"'
    part["Content-Transfer-Encoding"] = "base64"
    part["Content-Disposition"] = f'attachment; filename="{attachment.filename}"'
    part.set_payload(wrap_base64(attachment.content))
    return part


def render(message: ComposedMessage, boundary: Optional[str] = None) -> bytes:
    """Serialize a ComposedMessage to wire bytes."""
    msg = EmailMessage(policy=policy.SMTP)
    msg["To"] = message.to
    msg["Subject"] = message.subject
    if message.in_reply_to:
        msg["In-Reply-To"] = message.in_reply_to
    if message.references:
        msg["References"] = message.references
    msg["MIME-Version"] = "1.0"

    if message.attachments:
        msg["Content-Type"] = f'multipart/mixed; boundary="{boundary or new_boundary()}"'
        msg.attach(_text_part(message.body_text))
        for attachment in message.attachments:
            msg.attach(_attachment_part(attachment))
    elif message.body_html:
        msg["Content-Type"] = f'multipart/alternative; boundary="{boundary or new_boundary()}"'
        msg.attach(_text_part(message.body_text))
        msg.attach(_text_part(message.body_html, "html"))
    else:
        msg.set_content(message.body_text, charset="utf-8", cte=_text_cte(message.body_text))

    return msg.as_bytes()


def build_reply(original: EmailRecord, body: str, body_html: Optional[str] = None) -> ComposedMessage:
    """A reply addressed to the original sender, threaded under it."""
    message_id = original.header("Message-ID") or original.message_id
    original_refs = original.header("References") or ""
    references = f"{original_refs} {message_id}" if original_refs else message_id
    return ComposedMessage(
        to=original.from_email or "",
        subject=prefix_subject(original.subject, REPLY_PREFIX),
        body_text=body,
        body_html=body_html,
        in_reply_to=message_id,
        references=references,
        thread_id=original.thread_id,
    )


def _format_date(epoch_millis: Optional[int]) -> str:
    if epoch_millis is None:
        return ""
    return format_datetime(datetime.fromtimestamp(epoch_millis / 1000, tz=timezone.utc))


def build_forward(original: EmailRecord, to: str, body: str = "") -> ComposedMessage:
    """Quote the original below the user's note."""
    sender = original.from_name or original.from_email
    lines = [
        body or "",
        "",
        FORWARD_MARKER,
        f"From: {sender} <{original.from_email}>",
        f"Date: {_format_date(original.date)}",
        f"Subject: {original.subject}",
        f"To: {', '.join(original.to_emails)}",
        "",
        original.body_text or original.snippet,
    ]
    return ComposedMessage(
        to=to,
        subject=prefix_subject(original.subject, FORWARD_PREFIX),
        body_text="\n".join(lines),
    )


def compose(kind: str, params: dict) -> bytes:
    """
    Build wire bytes for "send", "reply" or "forward".

    send:    ComposedMessage fields
    reply:   original (EmailRecord), body, body_html
    forward: original (EmailRecord), to, body
    """
    if kind == "send":
        message = ComposedMessage(**params)
    elif kind == "reply":
        message = build_reply(params["original"], params.get("body", ""), params.get("body_html"))
    elif kind == "forward":
        message = build_forward(params["original"], params["to"], params.get("body", ""))
    else:
        raise ValueError(f"Unknown message kind: {kind}")
    return render(message)


def encode_transport(raw: bytes) -> str:
    """base64url without padding, as messages.send expects."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def send_body(message: ComposedMessage) -> dict:
    """Request body for users.messages.send."""
    body = {"raw": encode_transport(render(message))}
    if message.thread_id:
        body["threadId"] = message.thread_id
    return body
