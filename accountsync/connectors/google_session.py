"""
Per-account Google API session.

Each linked account gets its own GoogleSession holding its credentials,
lazily built Gmail / Calendar / People services and a RateLimitedClient.
Nothing here is process-global, so several accounts can sync side by side.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import httplib2
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from accountsync.config import DEFAULT_CREDENTIALS_PATH, DEFAULT_MAX_RETRIES, DEFAULT_TOKEN_DIR
from accountsync.connectors.rate_limited import RateLimitedClient
from accountsync.errors import AuthenticationError
from accountsync.models.account import Account


logger = logging.getLogger(__name__)

# Google API scopes
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/contacts.readonly",
]

SERVICES = {
    "gmail": ("gmail", "v1"),
    "calendar": ("calendar", "v3"),
    "people": ("people", "v1"),
}


class TokenSession(Protocol):
    """Supplies valid credentials per account email. Refresh is its business."""

    def ensure_valid_token(self, email: str) -> bool: ...

    def credentials(self, email: str) -> Any: ...


class FileTokenSession:
    """
    OAuth tokens kept as one `token_<email>.json` file per account.

    Expired tokens are refreshed in place. The browser consent flow only
    runs when the session is interactive (i.e. from the CLI's add-account).
    """

    def __init__(
        self,
        credentials_path: str = DEFAULT_CREDENTIALS_PATH,
        token_dir: str = DEFAULT_TOKEN_DIR,
        scopes: Optional[list[str]] = None,
        interactive: bool = False,
    ):
        self._credentials_path = Path(credentials_path)
        self._token_dir = Path(token_dir)
        self._scopes = scopes or SCOPES
        self._interactive = interactive
        self._creds: dict[str, Credentials] = {}

    def token_path(self, email: str) -> Path:
        return self._token_dir / f"token_{email}.json"

    def _save(self, email: str, creds: Credentials) -> None:
        self._token_dir.mkdir(parents=True, exist_ok=True)
        with open(self.token_path(email), "w") as f:
            f.write(creds.to_json())

    def _load(self, email: str) -> Optional[Credentials]:
        path = self.token_path(email)
        if not path.exists():
            return None
        return Credentials.from_authorized_user_file(str(path), self._scopes)

    def _authorize(self, email: str) -> Credentials:
        if not self._credentials_path.exists():
            raise AuthenticationError(
                f"OAuth credentials not found: {self._credentials_path}\n"
                "Download from Google Cloud Console → APIs & Services → Credentials"
            )
        flow = InstalledAppFlow.from_client_secrets_file(str(self._credentials_path), self._scopes)
        creds = flow.run_local_server(port=0, login_hint=email)
        self._save(email, creds)
        return creds

    def credentials(self, email: str) -> Credentials:
        """Valid credentials for `email`, refreshing or authorizing as needed."""
        creds = self._creds.get(email) or self._load(email)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                try:
                    creds.refresh(Request())
                except RefreshError as e:
                    raise AuthenticationError(f"Token refresh failed for {email}: {e}") from e
                self._save(email, creds)
            elif self._interactive:
                creds = self._authorize(email)
            else:
                raise AuthenticationError(f"No valid token for {email}; run add-account first")

        self._creds[email] = creds
        return creds

    def ensure_valid_token(self, email: str) -> bool:
        try:
            self.credentials(email)
        except AuthenticationError as e:
            logger.warning("%s", e)
            return False
        return True


class GoogleSession:
    """API services and a rate-limited executor bound to one account."""

    def __init__(
        self,
        account: Account,
        tokens: TokenSession,
        build_service: Callable[..., Any] = build,
        max_retries: int = DEFAULT_MAX_RETRIES,
        per_call_http: bool = True,
        sleep: Optional[Callable] = None,
    ):
        self.account = account
        self._tokens = tokens
        self._build_service = build_service
        self._services: dict[str, Any] = {}
        kwargs = {"sleep": sleep} if sleep is not None else {}
        self.client = RateLimitedClient(
            max_retries=max_retries,
            http_factory=self.new_http if per_call_http else None,
            **kwargs,
        )

    @property
    def account_id(self) -> str:
        return self.account.id

    async def ensure_valid_token(self) -> None:
        """Refresh the account token (off the event loop) or raise AuthenticationError."""
        ok = await asyncio.to_thread(self._tokens.ensure_valid_token, self.account.email)
        if not ok:
            raise AuthenticationError(f"No valid credentials for {self.account.email}")

    def new_http(self) -> AuthorizedHttp:
        """A fresh authorized http object for one request."""
        return AuthorizedHttp(self._tokens.credentials(self.account.email), http=httplib2.Http())

    def _service(self, name: str):
        if name not in self._services:
            api, version = SERVICES[name]
            self._services[name] = self._build_service(
                api,
                version,
                credentials=self._tokens.credentials(self.account.email),
                cache_discovery=False,
            )
        return self._services[name]

    @property
    def gmail(self):
        """Lazily initialize and return the Gmail API service."""
        return self._service("gmail")

    @property
    def calendar(self):
        return self._service("calendar")

    @property
    def people(self):
        return self._service("people")
