"""
Email templates, either shared or owned by one account.
"""
import logging
import uuid
from pathlib import Path
from typing import Optional

from diskcache import Cache

from accountsync.errors import NotFoundError
from accountsync.models.templates import EmailTemplate
from accountsync.store.cursors import now_millis


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "subject", "body", "category", "is_favorite", "account_id")


class TemplateStore:
    def __init__(self, directory: Path):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    def _visible(self, account_id: Optional[str]) -> list[EmailTemplate]:
        """Shared templates, plus the account's own when an account is given."""
        templates = (EmailTemplate.model_validate(self._cache[key]) for key in self._cache.iterkeys())
        return [t for t in templates if t.account_id is None or (account_id and t.account_id == account_id)]

    def _put(self, template: EmailTemplate) -> EmailTemplate:
        self._cache.set(template.id, template.model_dump(mode="json"))
        return template

    def get(self, template_id: str) -> EmailTemplate:
        row = self._cache.get(template_id)
        if row is None:
            raise NotFoundError("Template", template_id)
        return EmailTemplate.model_validate(row)

    def list_templates(
        self, account_id: Optional[str] = None, category: Optional[str] = None, favorites_only: bool = False
    ) -> list[EmailTemplate]:
        """Favorites first, then most used, then most recently updated."""
        templates = self._visible(account_id)
        if category:
            templates = [t for t in templates if t.category == category]
        if favorites_only:
            templates = [t for t in templates if t.is_favorite]
        templates.sort(key=lambda t: (t.is_favorite, t.usage_count, t.updated_at), reverse=True)
        return templates

    def create(
        self,
        name: str,
        subject: str = "",
        body: str = "",
        category: Optional[str] = None,
        account_id: Optional[str] = None,
        is_favorite: bool = False,
    ) -> EmailTemplate:
        now = now_millis()
        template = EmailTemplate(
            id=uuid.uuid4().hex,
            account_id=account_id,
            name=name,
            subject=subject,
            body=body,
            category=category or None,
            is_favorite=is_favorite,
            created_at=now,
            updated_at=now,
        )
        logger.info('Template created: "%s" (%s)', name, template.id)
        return self._put(template)

    def update(self, template_id: str, **updates) -> EmailTemplate:
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise ValueError("No valid fields to update")
        template = self.get(template_id)
        return self._put(template.model_copy(update={**changes, "updated_at": now_millis()}))

    def delete(self, template_id: str) -> None:
        if not self._cache.delete(template_id):
            raise NotFoundError("Template", template_id)
        logger.info("Template deleted: %s", template_id)

    def increment_usage(self, template_id: str) -> EmailTemplate:
        template = self.get(template_id)
        return self._put(
            template.model_copy(update={"usage_count": template.usage_count + 1, "updated_at": now_millis()})
        )

    def toggle_favorite(self, template_id: str) -> EmailTemplate:
        template = self.get(template_id)
        return self._put(
            template.model_copy(update={"is_favorite": not template.is_favorite, "updated_at": now_millis()})
        )

    def categories(self, account_id: Optional[str] = None) -> list[str]:
        """Distinct non-empty categories, sorted."""
        return sorted({t.category for t in self._visible(account_id) if t.category})

    def clear_account(self, account_id: str) -> int:
        """Drop an account's own templates. Shared templates are kept."""
        removed = 0
        for key in list(self._cache.iterkeys()):
            row = self._cache.get(key)
            if row is not None and row.get("account_id") == account_id:
                removed += bool(self._cache.delete(key))
        return removed
