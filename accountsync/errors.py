"""
Error taxonomy for the sync engine.

Remote failures surface as googleapiclient's HttpError; only the transient
ones (rate limit / quota) are retried by the RateLimitedClient.
"""

import json
from typing import Optional

from googleapiclient.errors import HttpError


# 403 reasons that mean "slow down" rather than "forbidden"
TRANSIENT_403_REASONS = {
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "quotaExceeded",
    "dailyLimitExceeded",
}


class SyncEngineError(Exception):
    """Base class for errors raised by accountsync."""


class NotFoundError(SyncEngineError, LookupError):
    """A record requested by id is absent from the local cache."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class AuthenticationError(SyncEngineError):
    """Credentials for an account are missing or cannot be refreshed."""


class SyncInProgressError(SyncEngineError):
    """A sync pass for the same account and sync type is already running."""

    def __init__(self, account_id: str, sync_type: str):
        super().__init__(f"{sync_type} sync already running for account {account_id}")
        self.account_id = account_id
        self.sync_type = sync_type


def _error_reasons(exc: HttpError) -> set[str]:
    """Collect the `reason` fields from a Google API error body."""
    content = exc.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        body = json.loads(content or "{}")
    except ValueError:
        return set()
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if not isinstance(error, dict):
        return set()
    reasons = {item.get("reason") for item in error.get("errors", []) if isinstance(item, dict)}
    for detail in error.get("details", []):
        if isinstance(detail, dict) and detail.get("reason"):
            reasons.add(detail["reason"])
    reasons.discard(None)
    return reasons


def http_status(exc: BaseException) -> Optional[int]:
    """Return the HTTP status of a Google API error, or None."""
    if isinstance(exc, HttpError):
        return int(exc.resp.status)
    return None


def is_transient(exc: BaseException) -> bool:
    """True for 429s and for 403s caused by rate limits or quotas."""
    status = http_status(exc)
    if status == 429:
        return True
    if status == 403:
        return bool(_error_reasons(exc) & TRANSIENT_403_REASONS)
    return False
