"""
Retrying executor for Google API requests.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from accountsync.config import DEFAULT_MAX_RETRIES
from accountsync.errors import is_transient


logger = logging.getLogger(__name__)

# Backoff: 2s, 4s, 8s, 16s, then capped at 32s
BACKOFF_MULTIPLIER = 2
BACKOFF_MAX_SECONDS = 32

RequestFactory = Callable[[], Any]
HttpFactory = Callable[[], Any]


class RateLimitedClient:
    """
    Runs googleapiclient requests in a worker thread, retrying rate limits.

    `request_factory` must build a fresh HttpRequest on every call, so each
    attempt is an independent request. When an `http_factory` is given, each
    attempt executes over its own authorized http object (httplib2 is not
    thread safe).
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        http_factory: Optional[HttpFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self._http_factory = http_factory
        self._sleep = sleep

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(is_transient),
            wait=wait_exponential(multiplier=BACKOFF_MULTIPLIER, max=BACKOFF_MAX_SECONDS),
            stop=stop_after_attempt(self.max_retries),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

    def _run(self, request_factory: RequestFactory) -> Any:
        request = request_factory()
        if self._http_factory is None:
            return request.execute()
        return request.execute(http=self._http_factory())

    async def execute(self, request_factory: RequestFactory) -> Any:
        """Execute the request, retrying only transient failures."""
        async for attempt in self._retrying():
            with attempt:
                return await asyncio.to_thread(self._run, request_factory)
