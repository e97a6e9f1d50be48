"""Verification Context — one-time 6-digit code with a fixed validity window.

Invariants:
    - code is drawn uniformly from [CODE_MIN, CODE_MAX] at creation time
    - expire_time = creation time + ttl (15 minutes by default)
    - is_expired(now) is true iff now >= expire_time
    - matches() compares codes only; callers must also check is_expired()

Design Decisions:
    - Frozen dataclass: a context is never edited, it is replaced when a new
      code is issued or discarded after a successful verification
    - secrets.randbelow over random: codes guard account takeover
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from account_registry.core.domain_types import CODE_MAX, CODE_MIN, VERIFICATION_CODE_TTL


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerificationContext:
    """Email, one-time code and expiry of a pending verification."""

    email: str
    code: int
    expire_time: datetime

    @classmethod
    def create(
        cls,
        email: str,
        now: datetime | None = None,
        ttl: timedelta = VERIFICATION_CODE_TTL,
    ) -> "VerificationContext":
        """Issue a fresh code for `email`. Sending the mail is the caller's job."""
        now = now or utc_now()
        code = CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1)
        return cls(email=email, code=code, expire_time=now + ttl)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expire_time

    def matches(self, code: int) -> bool:
        return self.code == code

    def accepts(self, code: int, now: datetime | None = None) -> bool:
        """True iff `code` matches and the context has not expired."""
        return not self.is_expired(now) and self.matches(code)
