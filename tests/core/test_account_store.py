"""Account Store — index consistency, conflicts, sweeps and concurrent access.

Tests cover:
    - insert / lookup / remove keep id -> position consistent
    - refresh_all drops expired registrations and reports them to persistence
    - Concurrent inserts and lookups from many threads
    - Removal and sweep drops wait for the account write lock
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from account_registry.core.account import Account, UserAttributes
from account_registry.core.account_store import AccountStore
from account_registry.core.domain_types import account_id_for
from account_registry.core.errors import AccountNotFoundError, ConflictError

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self):
        self.saved = []
        self.deleted = []

    def save(self, account):
        self.saved.append(account.id)

    def delete(self, account_id):
        self.deleted.append(account_id)


def _register(name: str, now=NOW) -> Account:
    return Account.register(f"{name}@pkuschool.edu.cn", now=now)


def _verified(name: str) -> Account:
    account = _register(name)
    attributes = UserAttributes.create(
        email=account.email, name=name, school_id=1, phone=1,
        password="password123", now=NOW,
    )
    account.activate(account.state.context.code, attributes, NOW)
    return account


def _assert_index_consistent(store: AccountStore):
    assert len(store.ids()) == len(store)
    for account_id in store.ids():
        assert store.lookup(account_id).id == account_id


def test_insert_then_lookup():
    store = AccountStore()
    account = _register("alice")
    store.insert(account)
    assert store.lookup(account.id) is account
    assert account.id in store
    assert len(store) == 1


def test_insert_duplicate_conflicts():
    store = AccountStore()
    store.insert(_register("alice"))
    with pytest.raises(ConflictError) as exc_info:
        store.insert(_register("alice"))
    assert exc_info.value.account_id == account_id_for("alice@pkuschool.edu.cn")
    assert len(store) == 1


def test_lookup_missing_raises():
    with pytest.raises(AccountNotFoundError):
        AccountStore().lookup(account_id_for("ghost@pkuschool.edu.cn"))


def test_remove_keeps_other_positions_valid():
    store = AccountStore()
    accounts = [_register(n) for n in ("alice", "bob", "carol", "dave")]
    for a in accounts:
        store.insert(a)

    removed = store.remove(accounts[1].id)

    assert removed is accounts[1]
    assert accounts[1].id not in store
    _assert_index_consistent(store)
    assert store.lookup(accounts[3].id) is accounts[3]


def test_remove_missing_returns_none():
    assert AccountStore().remove(account_id_for("ghost@pkuschool.edu.cn")) is None


def test_remove_deletes_durable_record():
    sink = RecordingSink()
    store = AccountStore(persistence=sink)
    account = _register("alice")
    store.insert(account)
    store.remove(account.id)
    assert sink.deleted == [account.id]


def test_constructor_skips_duplicates():
    store = AccountStore([_register("alice"), _register("alice"), _register("bob")])
    assert len(store) == 2
    _assert_index_consistent(store)


def test_refresh_all_drops_expired_registrations():
    sink = RecordingSink()
    stale = _register("stale")
    fresh = _register("fresh", now=NOW + timedelta(minutes=10))
    member = _verified("member")
    store = AccountStore([stale, member, fresh], persistence=sink)

    dropped = store.refresh_all(NOW + timedelta(minutes=15))

    assert dropped == 1
    assert stale.id not in store
    assert fresh.id in store
    assert member.id in store
    assert sink.deleted == [stale.id]
    _assert_index_consistent(store)


def test_refresh_all_is_idempotent():
    store = AccountStore([_register("stale"), _verified("member")])
    later = NOW + timedelta(hours=1)
    assert store.refresh_all(later) == 1
    assert store.refresh_all(later) == 0
    assert len(store) == 1


def test_refresh_all_sweeps_verified_accounts():
    member = _verified("member")
    member.request_password_reset(NOW)
    store = AccountStore([member])
    store.refresh_all(NOW + timedelta(minutes=20))
    assert member.state.verify is None


def test_refresh_one_removes_expired_registration():
    stale = _register("stale")
    store = AccountStore([stale])
    store.refresh_one(stale.id, NOW + timedelta(minutes=15))
    assert stale.id not in store


def test_refresh_one_ignores_absent_id():
    AccountStore().refresh_one(account_id_for("ghost@pkuschool.edu.cn"), NOW)


# --- removal and account locks ---------------------------------------

def test_remove_marks_account_removed():
    account = _verified("alice")
    store = AccountStore([account])
    assert not account.removed
    store.remove(account.id)
    assert account.removed


def test_refresh_drops_mark_account_removed():
    swept, single = _register("swept"), _register("single")
    store = AccountStore([swept, single])
    later = NOW + timedelta(minutes=15)
    store.refresh_one(single.id, later)
    store.refresh_all(later)
    assert swept.removed and single.removed


def test_remove_waits_for_held_write_lock():
    sink = RecordingSink()
    account = _verified("alice")
    store = AccountStore([account], persistence=sink)
    done = threading.Event()

    def remove():
        store.remove(account.id)
        done.set()

    with account.writing():
        remover = threading.Thread(target=remove)
        remover.start()
        assert not done.wait(0.1)
        assert sink.deleted == []
        assert not account.removed

    remover.join(5)
    assert done.is_set()
    assert sink.deleted == [account.id]


def test_refresh_all_keeps_registration_renewed_while_waiting():
    sink = RecordingSink()
    stale = _register("stale")
    store = AccountStore([stale], persistence=sink)
    later = NOW + timedelta(minutes=15)
    finished = threading.Event()

    def sweep():
        store.refresh_all(later)
        finished.set()

    with stale.writing():
        sweeper = threading.Thread(target=sweep)
        sweeper.start()
        assert not finished.wait(0.1)
        stale.reissue_code(later)

    sweeper.join(5)
    assert finished.is_set()
    assert stale.id in store
    assert not stale.removed
    assert sink.deleted == []


def test_concurrent_inserts():
    store = AccountStore()
    names = [f"user{i}" for i in range(200)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda n: store.insert(_register(n)), names))

    assert len(store) == 200
    _assert_index_consistent(store)


def test_concurrent_duplicate_inserts_keep_one():
    store = AccountStore()
    barrier = threading.Barrier(8)
    conflicts = []

    def attempt():
        account = _register("alice")
        barrier.wait()
        try:
            store.insert(account)
        except ConflictError:
            conflicts.append(True)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 1
    assert len(conflicts) == 7


def test_lookups_during_removals_never_return_wrong_account():
    accounts = [_register(f"user{i}") for i in range(100)]
    store = AccountStore(accounts)
    victims = accounts[::2]
    survivors = accounts[1::2]
    wrong = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            for account in survivors:
                try:
                    found = store.lookup(account.id)
                except AccountNotFoundError:
                    continue
                if found is not account:
                    wrong.append(account.id)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    for account in victims:
        store.remove(account.id)
    stop.set()
    for t in readers:
        t.join()

    assert wrong == []
    assert len(store) == len(survivors)
    _assert_index_consistent(store)
