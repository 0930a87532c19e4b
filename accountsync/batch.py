"""
Bulk mailbox operations with bounded chunking / concurrency.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from accountsync.config import MAX_BATCH_CHUNK_SIZE, MAX_BATCH_CONCURRENCY
from accountsync.connectors.google_session import GoogleSession
from accountsync.labels import TRASH, apply_label_delta, fold_flags
from accountsync.models.email import EmailRecord
from accountsync.models.results import BatchDeleteResult, BatchItemResult, BatchModifyResult, BatchTrashResult
from accountsync.store.cache_store import RecordStore


logger = logging.getLogger(__name__)


def chunked(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class BatchCoordinator:
    def __init__(
        self,
        emails: RecordStore[EmailRecord],
        chunk_size: int = MAX_BATCH_CHUNK_SIZE,
        concurrency: int = MAX_BATCH_CONCURRENCY,
    ):
        self._emails = emails
        # Both are hard caps
        self.chunk_size = min(chunk_size, MAX_BATCH_CHUNK_SIZE)
        self.concurrency = min(concurrency, MAX_BATCH_CONCURRENCY)

    async def batch_modify(
        self,
        session: GoogleSession,
        ids: list[str],
        add_labels: Optional[list[str]] = None,
        remove_labels: Optional[list[str]] = None,
        mark_read: bool = False,
        mark_unread: bool = False,
        star: bool = False,
        unstar: bool = False,
    ) -> BatchModifyResult:
        """
        One batchModify call per chunk of ids. A failed chunk is logged and
        the next one is attempted; the local projection is updated for every
        cached id afterwards.
        """
        if not ids:
            return BatchModifyResult(modified=0)

        account_id = session.account_id
        gmail = session.gmail
        add, remove = fold_flags(add_labels, remove_labels, mark_read, mark_unread, star, unstar)
        logger.info("Batch modifying %d emails", len(ids))

        body: dict = {}
        if add:
            body["addLabelIds"] = add
        if remove:
            body["removeLabelIds"] = remove

        modified = 0
        for index, chunk in enumerate(chunked(ids, self.chunk_size)):
            try:
                await session.client.execute(
                    lambda: gmail.users().messages().batchModify(userId="me", body={"ids": chunk, **body})
                )
            except Exception as e:
                # A failed chunk is logged; the next one is still attempted
                logger.error("Batch modify failed for chunk %d: %s", index, e)
                continue
            modified += len(chunk)

        for email_id in ids:
            record = self._emails.get(account_id, email_id)
            if record is not None:
                self._emails.upsert(account_id, apply_label_delta(record, add, remove))

        logger.info("Batch modify complete: %d emails modified", modified)
        return BatchModifyResult(modified=modified)

    async def _each(
        self,
        ids: list[str],
        operation: Callable[[str], Awaitable[None]],
    ) -> list[BatchItemResult]:
        """Run `operation` per id, at most `concurrency` at a time, results in input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(email_id: str) -> BatchItemResult:
            async with semaphore:
                try:
                    await operation(email_id)
                except Exception as e:
                    # Per-item failures are reported, never raised
                    logger.error("Batch operation failed for %s: %s", email_id, e)
                    return BatchItemResult(id=email_id, success=False, error=str(e))
                return BatchItemResult(id=email_id, success=True)

        return list(await asyncio.gather(*(run(email_id) for email_id in ids)))

    async def batch_trash(self, session: GoogleSession, ids: list[str]) -> BatchTrashResult:
        if not ids:
            return BatchTrashResult(trashed=0)

        account_id = session.account_id
        gmail = session.gmail

        async def trash(email_id: str) -> None:
            await session.client.execute(lambda: gmail.users().messages().trash(userId="me", id=email_id))
            record = self._emails.get(account_id, email_id)
            if record is not None:
                self._emails.upsert(account_id, apply_label_delta(record, [TRASH]))

        results = await self._each(ids, trash)
        trashed = sum(1 for r in results if r.success)
        logger.info("Batch trash complete: %d emails trashed", trashed)
        return BatchTrashResult(trashed=trashed, results=results)

    async def batch_delete(self, session: GoogleSession, ids: list[str]) -> BatchDeleteResult:
        if not ids:
            return BatchDeleteResult(deleted=0)

        account_id = session.account_id
        gmail = session.gmail

        async def delete(email_id: str) -> None:
            await session.client.execute(lambda: gmail.users().messages().delete(userId="me", id=email_id))
            self._emails.delete(account_id, email_id)

        results = await self._each(ids, delete)
        deleted = sum(1 for r in results if r.success)
        logger.info("Batch delete complete: %d emails permanently deleted", deleted)
        return BatchDeleteResult(deleted=deleted, results=results)
