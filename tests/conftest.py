"""Root conftest — shared test configuration."""

import os

# Ensure tests never reach a real mail provider or the local data directory
os.environ.setdefault("MAIL_API_URL", "")
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///:memory:",
)
os.environ.setdefault("LOG_FORMAT", "text")

from account_registry.core.passwords import set_bcrypt_rounds  # noqa: E402

# Minimum bcrypt cost keeps password tests fast
set_bcrypt_rounds(4)
