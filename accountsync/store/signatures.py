"""
Per-account signatures. At most one signature per account is the default.
"""
import logging
import uuid
from pathlib import Path
from typing import Optional

from diskcache import Cache

from accountsync.errors import NotFoundError
from accountsync.models.templates import Signature
from accountsync.store.cursors import now_millis


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "content", "is_default", "use_for_new", "use_for_reply")
REPLY = "reply"


class SignatureStore:
    def __init__(self, directory: Path):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    def _all(self, account_id: str) -> list[Signature]:
        signatures = (Signature.model_validate(self._cache[key]) for key in self._cache.iterkeys())
        return [s for s in signatures if s.account_id == account_id]

    def _put(self, signature: Signature) -> Signature:
        self._cache.set(signature.id, signature.model_dump(mode="json"))
        return signature

    def _unset_default(self, account_id: str) -> None:
        for signature in self._all(account_id):
            if signature.is_default:
                self._put(signature.model_copy(update={"is_default": False}))

    def get(self, signature_id: str) -> Signature:
        row = self._cache.get(signature_id)
        if row is None:
            raise NotFoundError("Signature", signature_id)
        return Signature.model_validate(row)

    def list_signatures(self, account_id: str) -> list[Signature]:
        """The default first, then oldest first."""
        return sorted(self._all(account_id), key=lambda s: (not s.is_default, s.created_at))

    def create(
        self,
        account_id: str,
        name: str,
        content: str,
        is_default: bool = False,
        use_for_new: bool = True,
        use_for_reply: bool = True,
    ) -> Signature:
        if is_default:
            self._unset_default(account_id)
        now = now_millis()
        signature = Signature(
            id=uuid.uuid4().hex,
            account_id=account_id,
            name=name,
            content=content,
            is_default=is_default,
            use_for_new=use_for_new,
            use_for_reply=use_for_reply,
            created_at=now,
            updated_at=now,
        )
        logger.info('Signature created: "%s" (%s)', name, signature.id)
        return self._put(signature)

    def update(self, signature_id: str, **updates) -> Signature:
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise ValueError("No valid fields to update")
        signature = self.get(signature_id)
        if changes.get("is_default"):
            self._unset_default(signature.account_id)
        return self._put(signature.model_copy(update={**changes, "updated_at": now_millis()}))

    def delete(self, signature_id: str) -> bool:
        return bool(self._cache.delete(signature_id))

    def get_default(self, account_id: str, kind: str = "new") -> Optional[Signature]:
        """
        The signature to insert for a new message or (kind="reply") a reply.

        The default signature wins if it is enabled for that kind; otherwise
        the oldest signature enabled for it, or None.
        """
        enabled = [
            s for s in self.list_signatures(account_id)
            if (s.use_for_reply if kind == REPLY else s.use_for_new)
        ]
        return enabled[0] if enabled else None

    def set_default(self, account_id: str, signature_id: str) -> Signature:
        signature = self.get(signature_id)
        if signature.account_id != account_id:
            raise NotFoundError("Signature", signature_id)
        self._unset_default(account_id)
        updated = self._put(signature.model_copy(update={"is_default": True, "updated_at": now_millis()}))
        logger.info("Default signature set: %s", signature_id)
        return updated

    def clear_account(self, account_id: str) -> int:
        removed = 0
        for signature in self._all(account_id):
            removed += bool(self._cache.delete(signature.id))
        return removed
