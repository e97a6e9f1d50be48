"""Service test fixtures — fake clock, fake mailer, in-memory service and API client.

Invariants:
    - Every test gets a fresh AccountStore; no state leaks between tests
    - Time only moves when a test advances the FakeClock
    - FakeMailer records every code it was asked to send

Design Decisions:
    - The API client swaps app.state.account_service instead of running the
      lifespan: ASGITransport does not start it, so no database is touched
    - RecordingSink stands in for the persistence worker at the service seam
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from account_registry.core.account_store import AccountStore
from account_registry.core.domain_types import CodePurpose
from account_registry.core.errors import MailSendError
from account_registry.main import app
from account_registry.services.account_service import AccountService


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailer:
    def __init__(self):
        self.sent: list[tuple[str, int, CodePurpose]] = []
        self.fail = False

    def send_code(self, email, code, purpose):
        if self.fail:
            raise MailSendError(ConnectionError("mail provider unreachable"))
        self.sent.append((email, code, purpose))

    def close(self):
        pass

    def last_code(self, purpose: CodePurpose | None = None) -> int:
        for _, code, sent_purpose in reversed(self.sent):
            if purpose is None or sent_purpose is purpose:
                return code
        raise AssertionError("no code sent")


class RecordingSink:
    def __init__(self):
        self.saved: list[tuple[int, str]] = []
        self.deleted: list[int] = []
        # saves and deletes in call order
        self.ops: list[tuple[str, int]] = []

    def save(self, account):
        self.saved.append((account.id, account.kind.value))
        self.ops.append(("save", account.id))

    def delete(self, account_id):
        self.deleted.append(account_id)
        self.ops.append(("delete", account_id))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(clock, mailer, sink):
    return AccountService(
        AccountStore(),
        mailer,
        sink,
        default_token_expiration_days=30,
        clock=clock,
    )


@pytest.fixture
async def client(service):
    """FastAPI test client bound to the in-memory service."""
    app.state.account_service = service
    app.state.db_manager = None

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.state.account_service = None
