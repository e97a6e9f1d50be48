"""Account — tagged union of Unverified / Verified and its state machine.

Invariants:
    - An account is exactly one of Unverified(context) or Verified(id, attributes, tokens, verify)
    - id is account_id_for(email) in both variants; activation never changes it
    - Only activate() moves Unverified -> Verified; nothing moves Verified -> Unverified
    - A verification context is single-use: it is discarded on successful verify
    - verify is None or ForgetPassword(context); only reset_password() consumes it

Design Decisions:
    - Variants as dataclasses + exhaustive `match` on every transition: no
      partial state is representable
    - Every account carries its own ReadWriteLock; the store hands out the
      Account and callers wrap transitions in reading()/writing()
    - Transitions take an optional `now` so expiry is testable without sleeping
    - The store marks an account removed while holding its write lock; a
      transition that acquires the lock afterwards must check `removed` first
"""

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from email_validator import EmailNotValidError, validate_email

from account_registry.core.domain_types import (
    DEFAULT_ALLOWED_DOMAINS, VERIFICATION_CODE_TTL,
    AccountId, AccountState, Permission, account_id_for,
)
from account_registry.core.errors import (
    EmailDomainNotInSchoolError, InvalidEmailError, PasswordIncorrectError,
    PermissionDeniedError, TokenIncorrectError, UserRegisteredError,
    UserUnverifiedError, VerificationCodeError,
)
from account_registry.core.locks import ReadWriteLock
from account_registry.core.passwords import hash_password, verify_password
from account_registry.core.tokens import TokenSet
from account_registry.core.verification import VerificationContext, utc_now


def normalize_email(email: str) -> str:
    """Validate syntax (no DNS lookups) and return the normalized address."""
    try:
        info = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidEmailError(str(e)) from e
    return info.normalized


# ─── Attributes ─────────────────────────────────────────────────

@dataclass
class UserAttributes:
    """Attributes of a registered user, supplied at activation time."""

    email: str
    name: str
    school_id: int
    phone: int
    password_hash: str
    house: str | None = None
    organization: str | None = None
    permissions: frozenset[Permission] = frozenset()
    registration_time: datetime = field(default_factory=utc_now)
    # 0 means tokens never expire
    token_expiration_days: int = 0

    @classmethod
    def create(
        cls,
        email: str,
        name: str,
        school_id: int,
        phone: int,
        password: str,
        *,
        house: str | None = None,
        organization: str | None = None,
        permissions: frozenset[Permission] = frozenset(),
        token_expiration_days: int = 0,
        now: datetime | None = None,
    ) -> "UserAttributes":
        """Build attributes from a plain password."""
        return cls(
            email=email,
            name=name,
            school_id=school_id,
            phone=phone,
            password_hash=hash_password(password),
            house=house,
            organization=organization,
            permissions=frozenset(permissions),
            registration_time=now or utc_now(),
            token_expiration_days=token_expiration_days,
        )


@dataclass(frozen=True)
class UserMetadata:
    """Public profile of a verified user."""

    email: str
    name: str
    school_id: int
    phone: int
    house: str | None
    organization: str | None


# ─── Variants ───────────────────────────────────────────────────

@dataclass
class ForgetPassword:
    """A password reset was requested and is waiting for its code."""
    context: VerificationContext


VerifyState = ForgetPassword | None


@dataclass
class Unverified:
    context: VerificationContext


@dataclass
class Verified:
    id: AccountId
    attributes: UserAttributes
    tokens: TokenSet = field(default_factory=TokenSet)
    verify: VerifyState = None


AccountVariant = Unverified | Verified


# ─── Account ────────────────────────────────────────────────────

class Account:
    """One registry record. Not thread-safe by itself: hold its lock."""

    def __init__(self, state: AccountVariant) -> None:
        self._state = state
        self._lock = ReadWriteLock()
        self._removed = False

    @classmethod
    def register(
        cls,
        email: str,
        allowed_domains: frozenset[str] = DEFAULT_ALLOWED_DOMAINS,
        now: datetime | None = None,
        ttl: timedelta = VERIFICATION_CODE_TTL,
    ) -> "Account":
        """Create an Unverified account for an address in an allowed domain."""
        address = normalize_email(email)
        domain = address.rpartition("@")[2].lower()
        if domain not in allowed_domains:
            raise EmailDomainNotInSchoolError(domain)
        return cls(Unverified(VerificationContext.create(address, now, ttl)))

    # --- locking ---------------------------------------------------

    def reading(self) -> AbstractContextManager[None]:
        return self._lock.read()

    def writing(self) -> AbstractContextManager[None]:
        return self._lock.write()

    # --- accessors -------------------------------------------------

    @property
    def state(self) -> AccountVariant:
        return self._state

    @property
    def kind(self) -> AccountState:
        match self._state:
            case Unverified():
                return AccountState.UNVERIFIED
            case Verified():
                return AccountState.VERIFIED

    @property
    def is_verified(self) -> bool:
        return isinstance(self._state, Verified)

    @property
    def removed(self) -> bool:
        """True once the store has detached this account. Check under its lock."""
        return self._removed

    def mark_removed(self) -> None:
        """Called by the store with the write lock held, right before detaching."""
        self._removed = True

    @property
    def id(self) -> AccountId:
        match self._state:
            case Unverified(context=ctx):
                return account_id_for(ctx.email)
            case Verified(id=account_id):
                return account_id

    @property
    def email(self) -> str:
        match self._state:
            case Unverified(context=ctx):
                return ctx.email
            case Verified(attributes=attributes):
                return attributes.email

    @property
    def permissions(self) -> frozenset[Permission]:
        match self._state:
            case Unverified():
                return frozenset()
            case Verified(attributes=attributes):
                return attributes.permissions

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions

    def metadata(self) -> UserMetadata:
        match self._state:
            case Unverified():
                raise UserUnverifiedError()
            case Verified(attributes=a):
                return UserMetadata(
                    email=a.email,
                    name=a.name,
                    school_id=a.school_id,
                    phone=a.phone,
                    house=a.house,
                    organization=a.organization,
                )

    def is_expired_unverified(self, now: datetime | None = None) -> bool:
        """True for an Unverified account whose activation code has lapsed."""
        match self._state:
            case Unverified(context=ctx):
                return ctx.is_expired(now)
            case Verified():
                return False

    # --- transitions -----------------------------------------------

    def reissue_code(
        self, now: datetime | None = None, ttl: timedelta = VERIFICATION_CODE_TTL,
    ) -> VerificationContext:
        """Replace the activation code of an Unverified account (resend)."""
        match self._state:
            case Verified():
                raise UserRegisteredError()
            case Unverified(context=ctx):
                fresh = VerificationContext.create(ctx.email, now, ttl)
                self._state = Unverified(fresh)
                return fresh

    def check_activation_code(self, code: int, now: datetime | None = None) -> None:
        """Refuse activation early, before the caller pays for password hashing."""
        match self._state:
            case Verified():
                raise UserRegisteredError()
            case Unverified(context=ctx):
                if not ctx.accepts(code, now):
                    raise VerificationCodeError()

    def activate(
        self, code: int, attributes: UserAttributes, now: datetime | None = None,
    ) -> None:
        self.check_activation_code(code, now)
        match self._state:
            case Unverified(context=ctx):
                if attributes.email != ctx.email:
                    raise PermissionDeniedError()
                self._state = Verified(
                    id=account_id_for(attributes.email), attributes=attributes,
                )

    def request_password_reset(
        self, now: datetime | None = None, ttl: timedelta = VERIFICATION_CODE_TTL,
    ) -> VerificationContext:
        """Install a ForgetPassword context; the caller mails its code."""
        match self._state:
            case Unverified():
                raise UserUnverifiedError()
            case Verified() as state:
                ctx = VerificationContext.create(state.attributes.email, now, ttl)
                state.verify = ForgetPassword(ctx)
                return ctx

    def reset_password(
        self, code: int, new_password: str, now: datetime | None = None,
    ) -> None:
        match self._state:
            case Unverified():
                raise UserUnverifiedError()
            case Verified(verify=None):
                raise PermissionDeniedError()
            case Verified(verify=ForgetPassword(context=ctx)) as state:
                if not ctx.accepts(code, now):
                    raise VerificationCodeError()
                state.attributes.password_hash = hash_password(new_password)
                state.verify = None

    def login(self, password: str, now: datetime | None = None) -> str:
        match self._state:
            case Unverified():
                raise UserUnverifiedError()
            case Verified() as state:
                if not verify_password(password, state.attributes.password_hash):
                    raise PasswordIncorrectError()
                return state.tokens.new_token(
                    state.id, state.attributes.token_expiration_days, now,
                )

    def logout(self, token: str) -> None:
        match self._state:
            case Unverified():
                raise UserUnverifiedError()
            case Verified(tokens=tokens):
                if not tokens.remove(token):
                    raise TokenIncorrectError()

    def check_token(self, token: str, now: datetime | None = None) -> bool:
        match self._state:
            case Unverified():
                return False
            case Verified(tokens=tokens):
                return tokens.is_valid(token, now)

    def refresh(self, now: datetime | None = None) -> None:
        """Sweep expired tokens and clear an expired password-reset request."""
        match self._state:
            case Unverified():
                return
            case Verified(tokens=tokens) as state:
                tokens.refresh(now)
                if state.verify is not None and state.verify.context.is_expired(now):
                    state.verify = None

    def __repr__(self) -> str:
        return f"<Account id={self.id} state={self.kind.value}>"
