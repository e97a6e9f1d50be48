"""Password Hashing — bcrypt hashes for stored credentials.

Invariants:
    - Only bcrypt hashes are stored, never plain passwords
    - verify_password never raises on a malformed hash, it returns False

Design Decisions:
    - Passwords truncated to bcrypt's 72-byte limit before hashing
    - Cost factor is process-wide and set once on startup (tests lower it)
"""

import bcrypt

_BCRYPT_MAX_BYTES = 72
_rounds = 12


def set_bcrypt_rounds(rounds: int) -> None:
    global _rounds
    _rounds = rounds


def _pwd_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pwd_bytes(password), bcrypt.gensalt(rounds=_rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_pwd_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        return False
