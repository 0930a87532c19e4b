"""
Registry of linked accounts.
"""
import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from diskcache import Cache

from accountsync.errors import NotFoundError
from accountsync.models.account import Account
from accountsync.store.cursors import now_millis


logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("mail", "calendar", "contacts")


class AccountRegistry:
    def __init__(self, directory: Path):
        Path(directory).mkdir(parents=True, exist_ok=True)
        self._cache = Cache(str(directory))

    def close(self) -> None:
        self._cache.close()

    def add_account(
        self,
        email: str,
        display_name: Optional[str] = None,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        provider: str = "google",
    ) -> Account:
        """Link an account. Re-adding an email returns the existing account."""
        existing = self.find_by_email(email)
        if existing is not None:
            return existing
        account = Account(
            id=uuid.uuid4().hex,
            provider=provider,
            email=email,
            display_name=display_name or email,
            scopes=set(scopes),
            added_at=now_millis(),
        )
        self._cache.set(account.id, account.model_dump(mode="json"))
        logger.info("Account added: %s (%s)", email, account.id)
        return account

    def remove_account(self, account_id: str) -> bool:
        removed = bool(self._cache.delete(account_id))
        if removed:
            logger.info("Account removed: %s", account_id)
        return removed

    def get_account(self, account_id: str) -> Account:
        row = self._cache.get(account_id)
        if row is None:
            raise NotFoundError("Account", account_id)
        return Account.model_validate(row)

    def find_by_email(self, email: str) -> Optional[Account]:
        for account in self.list_accounts():
            if account.email.lower() == email.lower():
                return account
        return None

    def list_accounts(self, provider: str = "google") -> list[Account]:
        """Accounts for a provider, most recently added first."""
        accounts = [Account.model_validate(self._cache[key]) for key in self._cache.iterkeys()]
        accounts = [a for a in accounts if a.provider == provider]
        accounts.sort(key=lambda a: a.added_at or 0, reverse=True)
        return accounts
