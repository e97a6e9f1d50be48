"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO (durable records, mail) is reached through Protocol types
    - Implementations provided by shell via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, fakes in tests need no base class
    - AccountRepository is async because implementations do IO; PersistenceSink
      is sync and non-blocking because it is called while an account lock is held
"""

from typing import TYPE_CHECKING, Protocol

from account_registry.core.domain_types import AccountId, CodePurpose

if TYPE_CHECKING:
    from account_registry.core.account import Account


class AccountRepository(Protocol):
    """Durable record store, keyed by account id — implemented by shell."""
    async def load_all(self) -> list["Account"]: ...
    async def save(self, account_id: AccountId, snapshot: dict) -> None: ...
    async def delete(self, account_id: AccountId) -> None: ...


class PersistenceSink(Protocol):
    """Fire-and-forget persistence — returns immediately, never raises IO errors."""
    def save(self, account: "Account") -> None: ...
    def delete(self, account_id: AccountId) -> None: ...


class MailTransport(Protocol):
    """Delivers verification codes. Raises MailSendError on failure."""
    def send_code(self, email: str, code: int, purpose: CodePurpose) -> None: ...
    def close(self) -> None: ...
