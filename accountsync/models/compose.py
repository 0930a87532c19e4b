"""
Outbound message model. Built once, sent once, then discarded.
"""
from typing import Optional

from pydantic import BaseModel, Field


class Attachment(BaseModel):
    filename: str
    mime_type: str = Field(default="application/octet-stream")
    content: str = Field(description="Base64 encoded file content")


class ComposedMessage(BaseModel):
    to: str
    subject: str = ""
    body_text: str = ""
    body_html: Optional[str] = None
    attachments: list[Attachment] = Field(default_factory=list)
    in_reply_to: Optional[str] = None
    references: Optional[str] = None
    thread_id: Optional[str] = Field(default=None, description="Thread to send into (replies)")
