"""Account Snapshot — serialization / deserialization for Account.

Invariants:
    - account_to_snapshot produces a JSON-safe dict (no sets, no Enums, no datetimes)
    - account_from_snapshot(account_to_snapshot(a)) has the same id, state and tokens
    - Unknown permissions in a snapshot are dropped, not fatal (forward-compatible)

Design Decisions:
    - Tagged dict with a "state" key mirrors the Unverified / Verified variants
    - Datetimes as ISO-8601 strings with offset; ids as decimal strings (u64 > JSON safe int)
    - Called while the account lock is held, so the snapshot is a consistent copy
"""

from datetime import datetime

from account_registry.core.account import (
    Account, ForgetPassword, Unverified, UserAttributes, Verified,
)
from account_registry.core.domain_types import AccountId, AccountState, Permission
from account_registry.core.tokens import TokenRecord, TokenSet
from account_registry.core.verification import VerificationContext


def _context_to_dict(ctx: VerificationContext) -> dict:
    return {
        "email": ctx.email,
        "code": ctx.code,
        "expire_time": ctx.expire_time.isoformat(),
    }


def _context_from_dict(data: dict) -> VerificationContext:
    return VerificationContext(
        email=data["email"],
        code=int(data["code"]),
        expire_time=datetime.fromisoformat(data["expire_time"]),
    )


def _attributes_to_dict(a: UserAttributes) -> dict:
    return {
        "email": a.email,
        "name": a.name,
        "school_id": a.school_id,
        "phone": a.phone,
        "house": a.house,
        "organization": a.organization,
        "permissions": sorted(p.value for p in a.permissions),
        "registration_time": a.registration_time.isoformat(),
        "password_hash": a.password_hash,
        "token_expiration_days": a.token_expiration_days,
    }


def _attributes_from_dict(data: dict) -> UserAttributes:
    known = {p.value for p in Permission}
    return UserAttributes(
        email=data["email"],
        name=data["name"],
        school_id=int(data["school_id"]),
        phone=int(data["phone"]),
        password_hash=data["password_hash"],
        house=data.get("house"),
        organization=data.get("organization"),
        permissions=frozenset(
            Permission(p) for p in data.get("permissions", []) if p in known
        ),
        registration_time=datetime.fromisoformat(data["registration_time"]),
        token_expiration_days=int(data.get("token_expiration_days", 0)),
    )


def _tokens_to_dict(tokens: TokenSet) -> dict:
    return {
        token: {
            "issued_at": record.issued_at.isoformat(),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        }
        for token, record in tokens.items()
    }


def _tokens_from_dict(owner_id: AccountId, data: dict) -> TokenSet:
    return TokenSet({
        token: TokenRecord(
            owner_id=owner_id,
            issued_at=datetime.fromisoformat(meta["issued_at"]),
            expires_at=(
                datetime.fromisoformat(meta["expires_at"])
                if meta.get("expires_at") else None
            ),
        )
        for token, meta in data.items()
    })


def account_to_snapshot(account: Account) -> dict:
    """Serialize an Account to a JSON-safe dict. Pure, no IO."""
    match account.state:
        case Unverified(context=ctx):
            return {
                "state": AccountState.UNVERIFIED.value,
                "context": _context_to_dict(ctx),
            }
        case Verified(id=account_id, attributes=attributes, tokens=tokens, verify=verify):
            return {
                "state": AccountState.VERIFIED.value,
                "id": str(account_id),
                "attributes": _attributes_to_dict(attributes),
                "tokens": _tokens_to_dict(tokens),
                "verify": _context_to_dict(verify.context) if verify else None,
            }


def account_from_snapshot(data: dict) -> Account:
    """Reconstruct an Account from a snapshot dict. Pure, no IO.

    Raises KeyError / ValueError on a malformed snapshot.
    """
    state = AccountState(data["state"])
    if state is AccountState.UNVERIFIED:
        return Account(Unverified(_context_from_dict(data["context"])))

    account_id = AccountId(int(data["id"]))
    verify = data.get("verify")
    return Account(Verified(
        id=account_id,
        attributes=_attributes_from_dict(data["attributes"]),
        tokens=_tokens_from_dict(account_id, data.get("tokens") or {}),
        verify=ForgetPassword(_context_from_dict(verify)) if verify else None,
    ))
