"""Token Set — per-account collection of issued bearer tokens.

Invariants:
    - Every token in a set is unique and belongs to exactly one owner id
    - expires_at is None for tokens issued with expiration_days == 0 (never expire)
    - refresh(now) removes exactly the tokens with expires_at <= now
    - Multiple tokens may be live at once (multi-device login)

Design Decisions:
    - secrets.token_urlsafe(32): 256 bits of entropy, opaque to clients
    - Plain dict, no lock: the owning Account's lock serializes all access
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from account_registry.core.domain_types import AccountId
from account_registry.core.errors import DateOutOfRangeError
from account_registry.core.verification import utc_now

_TOKEN_BYTES = 32


@dataclass(frozen=True)
class TokenRecord:
    """Issue/expiry metadata of one bearer token."""

    owner_id: AccountId
    issued_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


class TokenSet:
    """Issued tokens of one account, keyed by the token string."""

    def __init__(self, records: dict[str, TokenRecord] | None = None) -> None:
        self._tokens: dict[str, TokenRecord] = dict(records or {})

    def new_token(
        self,
        owner_id: AccountId,
        expiration_days: int,
        now: datetime | None = None,
    ) -> str:
        """Issue a token valid for `expiration_days` (0 = never expires)."""
        issued_at = now or utc_now()
        expires_at = None
        if expiration_days:
            try:
                expires_at = issued_at + timedelta(days=expiration_days)
            except OverflowError:
                raise DateOutOfRangeError()

        token = secrets.token_urlsafe(_TOKEN_BYTES)
        while token in self._tokens:
            token = secrets.token_urlsafe(_TOKEN_BYTES)
        self._tokens[token] = TokenRecord(owner_id, issued_at, expires_at)
        return token

    def remove(self, token: str) -> bool:
        return self._tokens.pop(token, None) is not None

    def is_valid(self, token: str, now: datetime | None = None) -> bool:
        record = self._tokens.get(token)
        return record is not None and not record.is_expired(now)

    def refresh(self, now: datetime | None = None) -> None:
        """Drop every expired token. Never-expiring tokens are untouched."""
        now = now or utc_now()
        expired = [t for t, record in self._tokens.items() if record.is_expired(now)]
        for token in expired:
            del self._tokens[token]

    def items(self) -> list[tuple[str, TokenRecord]]:
        return list(self._tokens.items())

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
