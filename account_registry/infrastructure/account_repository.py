"""SQL Account Repository — durable record store for account snapshots.

Invariants:
    - One row per account id; save() overwrites the whole row (last write wins)
    - delete() of an absent id is a no-op
    - load_all() never fails on a single unreadable row: it logs and skips it

Design Decisions:
    - Implements core.repository_protocols.AccountRepository
    - session.merge() as portable upsert (SQLite in dev, Postgres in prod)
"""

import logging

from sqlalchemy import delete, select

from account_registry.core.account import Account
from account_registry.core.account_snapshot import account_from_snapshot
from account_registry.core.domain_types import AccountId
from account_registry.infrastructure.database import DatabaseSessionManager
from account_registry.models.account import AccountRecord

logger = logging.getLogger(__name__)


class SqlAccountRepository:
    """AccountRepository backed by the `accounts` table."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def load_all(self) -> list[Account]:
        async with self._db.session() as session:
            result = await session.execute(select(AccountRecord))
            records = result.scalars().all()

        accounts: list[Account] = []
        for record in records:
            try:
                accounts.append(account_from_snapshot(record.payload))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    f"Skipping unreadable account record: {e}",
                    extra={"account_id": record.id},
                )
        logger.info(f"Loaded {len(accounts)} accounts")
        return accounts

    async def save(self, account_id: AccountId, snapshot: dict) -> None:
        record = AccountRecord(
            id=str(account_id),
            email=_snapshot_email(snapshot),
            state=snapshot["state"],
            payload=snapshot,
        )
        async with self._db.session() as session:
            await session.merge(record)
            await session.commit()

    async def delete(self, account_id: AccountId) -> None:
        async with self._db.session() as session:
            await session.execute(
                delete(AccountRecord).where(AccountRecord.id == str(account_id)),
            )
            await session.commit()


def _snapshot_email(snapshot: dict) -> str:
    if "context" in snapshot:
        return snapshot["context"]["email"]
    return snapshot["attributes"]["email"]
