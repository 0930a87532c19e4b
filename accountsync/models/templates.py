"""
Reusable compose content: email templates and per-account signatures.
"""
from typing import Optional

from pydantic import BaseModel, Field


class EmailTemplate(BaseModel):
    """A canned message. Templates with no account_id are shared by every account."""

    id: str
    account_id: Optional[str] = None
    name: str
    subject: str = ""
    body: str = Field(default="", description="HTML body")
    category: Optional[str] = None
    is_favorite: bool = False
    usage_count: int = 0
    created_at: int
    updated_at: int


class Signature(BaseModel):
    id: str
    account_id: str
    name: str
    content: str = Field(default="", description="HTML content")
    is_default: bool = False
    use_for_new: bool = True
    use_for_reply: bool = True
    created_at: int
    updated_at: int
