"""Account Store — concurrent collection of accounts with an id -> position index.

Invariants:
    - index[id] == position of that account in the list, for every stored account,
      by the time any insert/remove/sweep call returns
    - At most one account per id: insert of an existing id raises ConflictError
    - Shape changes (insert, remove, sweep, rebuild) are serialized by one lock
    - Account contents are guarded by each account's own lock, never the shape lock
      alone, so different accounts never block each other
    - An account leaves the store only while its write lock is held, and is
      marked removed first: no transition can persist it after its delete
    - Lock order is shape lock, then account lock; never the reverse

Design Decisions:
    - Lookups take no shape lock: list indexing and dict reads are atomic, and a
      position made stale by a concurrent remove is detected (id mismatch) and
      reported as AccountNotFoundError. Callers may retry; the window closes
      before remove() returns
    - remove() rebuilds the whole index: every later position shifts by one.
      Known O(n) cost, accepted for simplicity over a slot/generation arena
    - refresh_all() sweeps with mark-and-compact in a single pass instead of
      removing by shifting offsets
"""

import logging
import threading
from contextlib import ExitStack
from datetime import datetime
from typing import Iterable

from account_registry.core.account import Account
from account_registry.core.domain_types import AccountId
from account_registry.core.errors import AccountNotFoundError, ConflictError
from account_registry.core.repository_protocols import PersistenceSink
from account_registry.core.verification import utc_now

logger = logging.getLogger(__name__)


class NullPersistence:
    """Persistence sink that drops everything (tests, dry runs)."""

    def save(self, account: Account) -> None:
        pass

    def delete(self, account_id: AccountId) -> None:
        pass


class AccountStore:
    """Ordered accounts plus an index cache for O(1) lookup by id."""

    def __init__(
        self,
        accounts: Iterable[Account] = (),
        persistence: PersistenceSink | None = None,
    ) -> None:
        self._shape_lock = threading.RLock()
        self._accounts: list[Account] = []
        self._index: dict[AccountId, int] = {}
        self._persistence: PersistenceSink = persistence or NullPersistence()
        for account in accounts:
            try:
                self.insert(account)
            except ConflictError:
                logger.warning(
                    "Skipping duplicate account on load",
                    extra={"account_id": account.id},
                )

    def attach_persistence(self, persistence: PersistenceSink) -> None:
        self._persistence = persistence

    # --- reads ---------------------------------------------------------

    def lookup(self, account_id: AccountId) -> Account:
        position = self._index.get(account_id)
        if position is None:
            raise AccountNotFoundError(account_id)
        accounts = self._accounts
        if position >= len(accounts):
            raise AccountNotFoundError(account_id)
        account = accounts[position]
        if account.id != account_id:
            # Stale position while a concurrent remove rebuilds the index
            raise AccountNotFoundError(account_id)
        return account

    def ids(self) -> list[AccountId]:
        return list(self._index)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._index

    def __len__(self) -> int:
        return len(self._accounts)

    # --- shape changes -------------------------------------------------

    def insert(self, account: Account) -> None:
        account_id = account.id
        with self._shape_lock:
            if account_id in self._index:
                raise ConflictError(account_id)
            self._accounts.append(account)
            self._index[account_id] = len(self._accounts) - 1

    def remove(self, account_id: AccountId) -> Account | None:
        """Remove an account and its durable record. None if absent.

        Waits for any transition running on the account to finish first.
        """
        with self._shape_lock:
            position = self._index.get(account_id)
            if position is None:
                return None
            account = self._accounts[position]
            with account.writing():
                self._detach(account)
                del self._accounts[position]
                self.rebuild_index()
        logger.info("Account removed", extra={"account_id": account_id})
        return account

    def _detach(self, account: Account) -> None:
        # shape lock and the account's write lock are held
        account.mark_removed()
        self._persistence.delete(account.id)

    def rebuild_index(self) -> None:
        """Repopulate id -> position from one scan of the list."""
        with self._shape_lock:
            self._index = {account.id: i for i, account in enumerate(self._accounts)}

    # --- sweeps --------------------------------------------------------

    def refresh_all(self, now: datetime | None = None) -> int:
        """Drop expired registrations, then sweep tokens and reset requests.

        Returns the number of unverified accounts dropped.
        """
        now = now or utc_now()
        with self._shape_lock, ExitStack() as held:
            kept: list[Account] = []
            dropped: list[Account] = []
            for account in self._accounts:
                with account.reading():
                    expired = account.is_expired_unverified(now)
                if expired:
                    held.enter_context(account.writing())
                    # a resend may have renewed the code while we waited
                    expired = account.is_expired_unverified(now)
                (dropped if expired else kept).append(account)
            if dropped:
                for account in dropped:
                    self._detach(account)
                self._accounts = kept
                self.rebuild_index()
            accounts = list(self._accounts)

        for account in accounts:
            with account.writing():
                account.refresh(now)

        if dropped:
            logger.info(
                f"Dropped {len(dropped)} expired registrations",
                extra={"dropped": len(dropped)},
            )
        logger.debug("accounts refreshed")
        return len(dropped)

    def refresh_one(self, account_id: AccountId, now: datetime | None = None) -> None:
        """refresh_all() narrowed to one account. Absent ids are ignored."""
        now = now or utc_now()
        try:
            account = self.lookup(account_id)
        except AccountNotFoundError:
            return
        with account.reading():
            expired = account.is_expired_unverified(now)
        if expired:
            self._drop_if_expired(account, now)
            return
        with account.writing():
            account.refresh(now)

    def _drop_if_expired(self, account: Account, now: datetime) -> None:
        account_id = account.id
        with self._shape_lock:
            position = self._index.get(account_id)
            if position is None or self._accounts[position] is not account:
                return
            with account.writing():
                if not account.is_expired_unverified(now):
                    return
                self._detach(account)
                del self._accounts[position]
                self.rebuild_index()
        logger.info("Expired registration dropped", extra={"account_id": account_id})
