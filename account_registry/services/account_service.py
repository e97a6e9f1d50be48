"""Account Service — the operations exposed to the HTTP layer.

Invariants:
    - Every id-targeted operation first runs refresh_one(id), so an expired
      registration is already AccountNotFoundError
    - Account-level failures surface as AccountOperationError(id, inner)
    - Mutations that must survive a restart are handed to the persistence sink
      while the account's write lock is still held
    - A transition that acquires the lock of an account the store has already
      removed raises AccountNotFoundError and persists nothing
    - Mail is sent after the account lock is released; a MailSendError does not
      roll back the code that was just issued (the caller may simply retry)

Design Decisions:
    - Plain synchronous class: FastAPI runs the calling routes on its thread
      pool, which gives real concurrent access to the store
    - Injected clock: expiry behaviour is testable without sleeping
    - Re-registering a still-unverified address reissues its code (resend path)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, TypeVar

from account_registry.core.account import Account, UserAttributes, UserMetadata
from account_registry.core.account_store import AccountStore, NullPersistence
from account_registry.core.domain_types import (
    DEFAULT_ALLOWED_DOMAINS, VERIFICATION_CODE_TTL,
    AccountId, CodePurpose, Permission,
)
from account_registry.core.errors import (
    AccountError, AccountNotFoundError, AccountOperationError, ConflictError,
)
from account_registry.core.repository_protocols import MailTransport, PersistenceSink
from account_registry.core.verification import VerificationContext, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ActivationProfile:
    """User-supplied attributes completing a registration."""

    name: str
    school_id: int
    phone: int
    password: str
    house: str | None = None
    organization: str | None = None
    token_expiration_days: int | None = None


class AccountService:
    """Register / activate / login / logout / password reset over an AccountStore."""

    def __init__(
        self,
        store: AccountStore,
        mailer: MailTransport,
        persistence: PersistenceSink | None = None,
        *,
        allowed_domains: frozenset[str] = DEFAULT_ALLOWED_DOMAINS,
        code_ttl: timedelta = VERIFICATION_CODE_TTL,
        default_token_expiration_days: int = 0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self._mailer = mailer
        self._persistence = persistence or NullPersistence()
        self._allowed_domains = allowed_domains
        self._code_ttl = code_ttl
        self._default_token_expiration_days = default_token_expiration_days
        self._clock = clock
        self.store.attach_persistence(self._persistence)

    # --- helpers ---------------------------------------------------

    def _run(
        self,
        account_id: AccountId,
        transition: Callable[[Account], T],
        *,
        write: bool = True,
        persist: bool = False,
    ) -> T:
        """Run `transition` on one account under its lock."""
        self.store.refresh_one(account_id, self._clock())
        account = self.store.lookup(account_id)
        guard = account.writing() if write else account.reading()
        with guard:
            if account.removed:
                raise AccountNotFoundError(account_id)
            try:
                result = transition(account)
            except AccountError as e:
                logger.info(
                    f"Account transition refused: {e.message}",
                    extra={"account_id": account_id, "error_code": e.code},
                )
                raise AccountOperationError(account_id, e)
            if persist:
                self._persistence.save(account)
        return result

    def _send(self, ctx: VerificationContext, purpose: CodePurpose, account_id: AccountId) -> None:
        self._mailer.send_code(ctx.email, ctx.code, purpose)
        logger.info(
            "Verification code issued",
            extra={"account_id": account_id, "purpose": purpose.value},
        )

    # --- operations ------------------------------------------------

    def register(self, email: str) -> AccountId:
        """Create an unverified account (or reissue its code) and mail the code."""
        now = self._clock()
        account = Account.register(email, self._allowed_domains, now, self._code_ttl)
        account_id = account.id
        self.store.refresh_one(account_id, now)

        try:
            self.store.insert(account)
        except ConflictError:
            ctx = self._run(
                account_id,
                lambda existing: existing.reissue_code(now, self._code_ttl),
                persist=True,
            )
        else:
            with account.writing():
                if account.removed:
                    raise AccountNotFoundError(account_id)
                ctx = account.state.context
                self._persistence.save(account)
            logger.info("Account registered", extra={"account_id": account_id})

        self._send(ctx, CodePurpose.ACTIVATE, account_id)
        return account_id

    def activate(self, account_id: AccountId, code: int, profile: ActivationProfile) -> None:
        now = self._clock()
        expiration_days = profile.token_expiration_days
        if expiration_days is None:
            expiration_days = self._default_token_expiration_days

        def transition(account: Account) -> None:
            account.check_activation_code(code, now)
            attributes = UserAttributes.create(
                email=account.email,
                name=profile.name,
                school_id=profile.school_id,
                phone=profile.phone,
                password=profile.password,
                house=profile.house,
                organization=profile.organization,
                token_expiration_days=expiration_days,
                now=now,
            )
            account.activate(code, attributes, now)

        self._run(account_id, transition, persist=True)
        logger.info("Account activated", extra={"account_id": account_id})

    def login(self, account_id: AccountId, password: str) -> str:
        now = self._clock()
        return self._run(account_id, lambda a: a.login(password, now), persist=True)

    def logout(self, account_id: AccountId, token: str) -> None:
        self._run(account_id, lambda a: a.logout(token), persist=True)

    def check_token(self, account_id: AccountId, token: str) -> bool:
        now = self._clock()
        return self._run(account_id, lambda a: a.check_token(token, now), write=False)

    def request_password_reset(self, account_id: AccountId) -> None:
        now = self._clock()
        ctx = self._run(
            account_id,
            lambda a: a.request_password_reset(now, self._code_ttl),
            persist=True,
        )
        self._send(ctx, CodePurpose.RESET_PASSWORD, account_id)

    def reset_password(self, account_id: AccountId, code: int, new_password: str) -> None:
        now = self._clock()
        self._run(
            account_id,
            lambda a: a.reset_password(code, new_password, now),
            persist=True,
        )
        logger.info("Password reset", extra={"account_id": account_id})

    def get_metadata(self, account_id: AccountId) -> UserMetadata:
        return self._run(account_id, lambda a: a.metadata(), write=False)

    def get_permissions(self, account_id: AccountId) -> frozenset[Permission]:
        return self._run(account_id, lambda a: a.permissions, write=False)

    def remove(self, account_id: AccountId) -> None:
        if self.store.remove(account_id) is None:
            raise AccountNotFoundError(account_id)

    def refresh_all(self) -> int:
        return self.store.refresh_all(self._clock())
