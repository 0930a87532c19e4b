"""
Single-message mailbox operations, label management and attachments.

Every mutation of a cached message checks the local record first, so a
missing id raises NotFoundError before anything is sent to Gmail.
"""
import logging
from typing import Optional

from accountsync.compose import build_forward, build_reply, send_body
from accountsync.connectors.gmail_parser import iter_attachments, iter_inline_images
from accountsync.connectors.google_session import GoogleSession
from accountsync.labels import TRASH, apply_label_delta, read_delta, star_delta
from accountsync.models.compose import ComposedMessage
from accountsync.models.email import EmailRecord
from accountsync.store.cache_store import RecordStore


logger = logging.getLogger(__name__)

# Folder name -> Gmail system label
FOLDER_LABELS = {
    "inbox": "INBOX",
    "sent": "SENT",
    "trash": "TRASH",
    "drafts": "DRAFT",
    "spam": "SPAM",
    "important": "IMPORTANT",
}
STARRED_FOLDER = "starred"


def _label_body(name: Optional[str] = None, color: Optional[dict] = None) -> dict:
    body: dict = {}
    if name:
        body["name"] = name
    if color:
        body["color"] = {
            "backgroundColor": color.get("backgroundColor"),
            "textColor": color.get("textColor"),
        }
    return body


class Mailbox:
    def __init__(self, emails: RecordStore[EmailRecord]):
        self._emails = emails

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_emails(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        label: Optional[str] = None,
        folder: Optional[str] = None,
        unread_only: bool = False,
    ) -> list[dict]:
        """Cached emails, newest first, without raw payloads."""
        where = []
        folder = folder.lower() if folder else None
        if folder == STARRED_FOLDER:
            where.append(lambda r: r.is_starred)
        else:
            wanted = FOLDER_LABELS.get(folder) if folder else label
            if wanted:
                where.append(lambda r: wanted in r.labels)
        if unread_only:
            where.append(lambda r: not r.is_read)
        records = self._emails.query(account_id, where=where, order_by="date", descending=True, limit=limit, offset=offset)
        return [record.summary() for record in records]

    def get_email(self, account_id: str, email_id: str) -> EmailRecord:
        return self._emails.require(account_id, email_id)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_email(self, session: GoogleSession, message: ComposedMessage) -> dict:
        gmail = session.gmail
        body = send_body(message)
        response = await session.client.execute(lambda: gmail.users().messages().send(userId="me", body=body))
        attached = f" with {len(message.attachments)} attachment(s)" if message.attachments else ""
        logger.info("Email sent: %s%s", response.get("id"), attached)
        return response

    async def reply_to_email(
        self, session: GoogleSession, email_id: str, body: str, body_html: Optional[str] = None
    ) -> dict:
        original = self.get_email(session.account_id, email_id)
        return await self.send_email(session, build_reply(original, body, body_html))

    async def forward_email(self, session: GoogleSession, email_id: str, to: str, body: str = "") -> dict:
        original = self.get_email(session.account_id, email_id)
        return await self.send_email(session, build_forward(original, to, body))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def _modify(
        self, session: GoogleSession, email_id: str, add: list[str], remove: list[str]
    ) -> EmailRecord:
        """Remote modify, then the same delta applied to the cached record."""
        record = self.get_email(session.account_id, email_id)
        gmail = session.gmail
        body = {}
        if add:
            body["addLabelIds"] = add
        if remove:
            body["removeLabelIds"] = remove
        await session.client.execute(lambda: gmail.users().messages().modify(userId="me", id=email_id, body=body))
        updated = apply_label_delta(record, add, remove)
        self._emails.upsert(session.account_id, updated)
        return updated

    async def mark_as_read(self, session: GoogleSession, email_id: str, is_read: bool = True) -> EmailRecord:
        return await self._modify(session, email_id, *read_delta(is_read))

    async def toggle_star(self, session: GoogleSession, email_id: str, is_starred: bool) -> EmailRecord:
        return await self._modify(session, email_id, *star_delta(is_starred))

    async def apply_label(self, session: GoogleSession, email_id: str, label_id: str) -> EmailRecord:
        return await self._modify(session, email_id, [label_id], [])

    async def remove_label(self, session: GoogleSession, email_id: str, label_id: str) -> EmailRecord:
        return await self._modify(session, email_id, [], [label_id])

    async def trash_email(self, session: GoogleSession, email_id: str) -> EmailRecord:
        record = self.get_email(session.account_id, email_id)
        gmail = session.gmail
        await session.client.execute(lambda: gmail.users().messages().trash(userId="me", id=email_id))
        updated = apply_label_delta(record, [TRASH])
        self._emails.upsert(session.account_id, updated)
        logger.info("Email trashed: %s", email_id)
        return updated

    async def delete_email(self, session: GoogleSession, email_id: str) -> None:
        """Permanently delete remotely, then drop the cached copy."""
        self.get_email(session.account_id, email_id)
        gmail = session.gmail
        await session.client.execute(lambda: gmail.users().messages().delete(userId="me", id=email_id))
        self._emails.delete(session.account_id, email_id)
        logger.info("Email permanently deleted: %s", email_id)

    # -------------------------------------------------------------------------
    # Label Management
    # -------------------------------------------------------------------------

    async def get_labels(self, session: GoogleSession) -> list[dict]:
        """System labels first, then user labels sorted by name."""
        gmail = session.gmail
        response = await session.client.execute(lambda: gmail.users().labels().list(userId="me"))
        labels = response.get("labels", [])
        system = [label for label in labels if label.get("type") == "system"]
        user = sorted((label for label in labels if label.get("type") == "user"), key=lambda l: l.get("name") or "")
        return system + user

    async def get_label(self, session: GoogleSession, label_id: str) -> dict:
        gmail = session.gmail
        return await session.client.execute(lambda: gmail.users().labels().get(userId="me", id=label_id))

    async def create_label(self, session: GoogleSession, name: str, color: Optional[dict] = None) -> dict:
        """Create a new label (supports nested labels via '/')."""
        gmail = session.gmail
        body = {
            **_label_body(name, color),
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        created = await session.client.execute(lambda: gmail.users().labels().create(userId="me", body=body))
        logger.info("Label created: %s", created.get("id"))
        return created

    async def update_label(
        self, session: GoogleSession, label_id: str, name: Optional[str] = None, color: Optional[dict] = None
    ) -> dict:
        gmail = session.gmail
        body = _label_body(name, color)
        return await session.client.execute(
            lambda: gmail.users().labels().patch(userId="me", id=label_id, body=body)
        )

    async def delete_label(self, session: GoogleSession, label_id: str) -> None:
        gmail = session.gmail
        await session.client.execute(lambda: gmail.users().labels().delete(userId="me", id=label_id))
        logger.info("Label deleted: %s", label_id)

    # -------------------------------------------------------------------------
    # Attachments
    # -------------------------------------------------------------------------

    async def get_attachments(self, session: GoogleSession, message_id: str) -> list[dict]:
        gmail = session.gmail
        msg = await session.client.execute(
            lambda: gmail.users().messages().get(userId="me", id=message_id, format="full")
        )
        return list(iter_attachments(msg.get("payload", {})))

    async def download_attachment(
        self, session: GoogleSession, message_id: str, attachment_id: str, filename: str
    ) -> dict:
        """Attachment data as Gmail returns it (base64url) with its size."""
        gmail = session.gmail
        response = await session.client.execute(
            lambda: gmail.users().messages().attachments().get(userId="me", messageId=message_id, id=attachment_id)
        )
        logger.info("Attachment downloaded: %s (%s bytes)", filename, response.get("size"))
        return {"filename": filename, "data": response.get("data"), "size": response.get("size", 0)}

    async def get_inline_images(self, session: GoogleSession, message_id: str) -> list[dict]:
        """
        Inline (Content-ID) images of a message with their base64url data.

        Small images carry their data in the message itself; the rest are
        fetched through the attachments endpoint. An image whose data cannot
        be fetched is logged and left out.
        """
        gmail = session.gmail
        msg = await session.client.execute(
            lambda: gmail.users().messages().get(userId="me", id=message_id, format="full")
        )
        images = []
        for image in iter_inline_images(msg.get("payload", {})):
            attachment_id = image.pop("attachment_id")
            if not image["data"] and attachment_id:
                try:
                    response = await session.client.execute(
                        lambda: gmail.users().messages().attachments().get(
                            userId="me", messageId=message_id, id=attachment_id
                        )
                    )
                except Exception as e:
                    logger.error("Failed to fetch inline image %s: %s", image["content_id"], e)
                    continue
                image["data"] = response.get("data")
            if image["data"]:
                images.append(image)
        logger.info("Found %d inline images in %s", len(images), message_id)
        return images
