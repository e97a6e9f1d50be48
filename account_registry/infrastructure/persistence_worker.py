"""Persistence Worker — best-effort background writer for account snapshots.

Invariants:
    - save()/delete() never block and never raise: they enqueue and return
    - The snapshot is taken by the caller's thread while it holds the account
      lock, so the queued copy is consistent
    - Jobs are applied in submission order; repeated saves of one id end with
      the last one (last write wins)
    - A failing job is logged and dropped; it never reaches the transition caller
    - stop() drains every job queued before it was called

Design Decisions:
    - asyncio.Queue consumed by one task on the event loop: the async
      repository stays on the loop, while writers on worker threads hand jobs
      over with call_soon_threadsafe
    - Accepted data-loss window: a crash after a transition but before its job
      is written loses that write; memory is the source of truth while running
"""

import asyncio
import logging
from dataclasses import dataclass

from account_registry.core.account import Account
from account_registry.core.account_snapshot import account_to_snapshot
from account_registry.core.domain_types import AccountId
from account_registry.core.repository_protocols import AccountRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _SaveJob:
    account_id: AccountId
    snapshot: dict


@dataclass(frozen=True)
class _DeleteJob:
    account_id: AccountId


class PersistenceWorker:
    """PersistenceSink that writes through an AccountRepository in the background."""

    def __init__(self, repository: AccountRepository):
        self._repository = repository
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[_SaveJob | _DeleteJob] | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="persistence-worker")
        logger.info("Persistence worker started")

    # --- PersistenceSink -------------------------------------------

    def save(self, account: Account) -> None:
        self._submit(_SaveJob(account.id, account_to_snapshot(account)))

    def delete(self, account_id: AccountId) -> None:
        self._submit(_DeleteJob(account_id))

    def _submit(self, job: _SaveJob | _DeleteJob) -> None:
        if self._loop is None or self._queue is None or self._loop.is_closed():
            logger.warning(
                "Persistence worker not running, dropping job",
                extra={"account_id": job.account_id},
            )
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, job)

    # --- lifecycle -------------------------------------------------

    async def flush(self) -> None:
        """Wait until every job submitted so far has been applied."""
        if self._queue is None:
            return
        # let call_soon_threadsafe callbacks land in the queue first
        await asyncio.sleep(0)
        await self._queue.join()

    async def stop(self) -> None:
        await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._loop = None
        logger.info("Persistence worker stopped")

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await self._apply(job)
            except Exception as e:
                logger.error(
                    f"Dropping failed persistence job: {e}",
                    extra={
                        "account_id": job.account_id,
                        "operation": type(job).__name__,
                    },
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _apply(self, job: _SaveJob | _DeleteJob) -> None:
        match job:
            case _SaveJob(account_id=account_id, snapshot=snapshot):
                await self._repository.save(account_id, snapshot)
            case _DeleteJob(account_id=account_id):
                await self._repository.delete(account_id)
