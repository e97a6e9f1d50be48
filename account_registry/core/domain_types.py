"""Domain Types — identity, permissions and lifecycle constants.

Invariants:
    - AccountId is an unsigned 64-bit int derived from the email address only
    - account_id_for(email) is deterministic across processes and restarts
    - Verification codes are 6-digit integers in [CODE_MIN, CODE_MAX]

Design Decisions:
    - NewType over wrapper classes: zero runtime cost, full type-checker support
    - BLAKE2b over builtin hash(): hash() is salted per process, ids must survive restarts
    - str Enums: serialize to JSON without custom encoders
"""

import hashlib
from datetime import timedelta
from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

AccountId = NewType("AccountId", int)


def account_id_for(email: str) -> AccountId:
    """Derive the stable 64-bit id of an account from its email address."""
    digest = hashlib.blake2b(email.encode("utf-8"), digest_size=8).digest()
    return AccountId(int.from_bytes(digest, "big"))


# ─── Constants ───────────────────────────────────────────────────

CODE_MIN = 100_000
CODE_MAX = 999_999
VERIFICATION_CODE_TTL = timedelta(minutes=15)

DEFAULT_ALLOWED_DOMAINS: frozenset[str] = frozenset({
    "i.pkuschool.edu.cn",
    "pkuschool.edu.cn",
})


# ─── Enums ───────────────────────────────────────────────────────

class AccountState(str, Enum):
    """Account lifecycle states — maps to the DB `state` column."""
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class Permission(str, Enum):
    """Capabilities that can be granted to a verified account."""
    OP = "op"
    VIEW_ACCOUNTS = "view_accounts"
    MANAGE_ACCOUNTS = "manage_accounts"
    POST = "post"
    REVIEW = "review"


class CodePurpose(str, Enum):
    """Why a verification code was mailed."""
    ACTIVATE = "activate"
    RESET_PASSWORD = "reset_password"
