"""Account Record ORM — one durable row per account, keyed by id.

Invariants:
    - id is the decimal string of the u64 account id (exceeds signed BIGINT)
    - payload is the full account snapshot (core/account_snapshot.py)
    - state and email are denormalized copies of the snapshot, for inspection only

Design Decisions:
    - JSON payload column: the in-memory store is the source of truth, the row
      is an opaque blob that is rewritten whole on every save (last write wins)
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from account_registry.db.base import Base


class AccountRecord(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<AccountRecord id={self.id} state={self.state}>"
