"""Account Service — end-to-end behaviour of the registry operations.

Tests cover:
    - Registration mails a code and persists the new account
    - Resend by re-registering; re-registering a verified address is refused
    - Expired registrations vanish before any operation sees them
    - Login tokens expire after the account's expiration days
    - Password reset mails a code and consumes it once
    - Mail failures surface without rolling back the issued code
    - Removal waits for a running transition; nothing is saved after the delete
    - Refused activations never hash the password
"""

import threading
import time
from datetime import timedelta

import pytest

import account_registry.core.account as account_module
from account_registry.core.domain_types import CodePurpose, Permission, account_id_for
from account_registry.core.errors import (
    AccountNotFoundError, AccountOperationError, EmailDomainNotInSchoolError,
    MailSendError, PasswordIncorrectError, UserRegisteredError,
    VerificationCodeError,
)
from account_registry.services.account_service import ActivationProfile

EMAIL = "alice@pkuschool.edu.cn"
PASSWORD = "correct horse battery"
PROFILE = ActivationProfile(
    name="Alice", school_id=2024001, phone=13800000000, password=PASSWORD,
    house="Ivy",
)


def _activated(service, mailer):
    account_id = service.register(EMAIL)
    service.activate(account_id, mailer.last_code(), PROFILE)
    return account_id


# --- register -------------------------------------------------------

def test_register_mails_activation_code(service, mailer, sink):
    account_id = service.register(EMAIL)

    assert account_id == account_id_for(EMAIL)
    [(email, code, purpose)] = mailer.sent
    assert email == EMAIL
    assert purpose is CodePurpose.ACTIVATE
    assert 100000 <= code <= 999999
    assert sink.saved == [(account_id, "unverified")]


def test_register_foreign_domain_is_refused(service, mailer):
    with pytest.raises(EmailDomainNotInSchoolError):
        service.register("alice@gmail.com")
    assert mailer.sent == []
    assert len(service.store) == 0


def test_reregister_unverified_resends_fresh_code(service, mailer, clock):
    first_id = service.register(EMAIL)
    clock.advance(minutes=10)

    second_id = service.register(EMAIL)

    assert first_id == second_id
    assert len(mailer.sent) == 2
    assert len(service.store) == 1
    # the fresh code lives its full window from the resend
    clock.advance(minutes=14)
    service.activate(second_id, mailer.last_code(), PROFILE)


def test_reregister_verified_is_refused(service, mailer):
    account_id = _activated(service, mailer)

    with pytest.raises(AccountOperationError) as exc_info:
        service.register(EMAIL)

    assert exc_info.value.account_id == account_id
    assert isinstance(exc_info.value.inner, UserRegisteredError)
    assert exc_info.value.http_status == 403


def test_register_after_expiry_starts_over(service, mailer, clock, sink):
    account_id = service.register(EMAIL)
    clock.advance(minutes=15)

    assert service.register(EMAIL) == account_id
    assert sink.deleted == [account_id]
    service.activate(account_id, mailer.last_code(), PROFILE)


# --- activate -------------------------------------------------------

def test_activate_then_metadata(service, mailer):
    account_id = _activated(service, mailer)

    meta = service.get_metadata(account_id)

    assert meta.email == EMAIL
    assert meta.name == "Alice"
    assert meta.house == "Ivy"
    assert service.get_permissions(account_id) == frozenset()


def test_activate_persists_verified_state(service, mailer, sink):
    account_id = _activated(service, mailer)
    assert sink.saved[-1] == (account_id, "verified")


def test_activate_wrong_code(service, mailer):
    account_id = service.register(EMAIL)
    wrong = 100000 if mailer.last_code() != 100000 else 100001

    with pytest.raises(AccountOperationError) as exc_info:
        service.activate(account_id, wrong, PROFILE)

    assert isinstance(exc_info.value.inner, VerificationCodeError)
    assert exc_info.value.code == "VERIFICATION_CODE"


def test_activate_after_expiry_is_not_found(service, mailer, clock):
    account_id = service.register(EMAIL)
    clock.advance(minutes=15)

    with pytest.raises(AccountNotFoundError):
        service.activate(account_id, mailer.last_code(), PROFILE)
    assert account_id not in service.store


def test_activate_twice_is_refused(service, mailer):
    account_id = _activated(service, mailer)
    with pytest.raises(AccountOperationError) as exc_info:
        service.activate(account_id, 123456, PROFILE)
    assert isinstance(exc_info.value.inner, UserRegisteredError)


def test_unverified_metadata_is_refused(service):
    account_id = service.register(EMAIL)
    with pytest.raises(AccountOperationError) as exc_info:
        service.get_metadata(account_id)
    assert exc_info.value.code == "USER_UNVERIFIED"


def test_unknown_id_is_not_found(service):
    with pytest.raises(AccountNotFoundError):
        service.login(account_id_for("ghost@pkuschool.edu.cn"), PASSWORD)


# --- login / tokens -------------------------------------------------

def test_login_logout_cycle(service, mailer):
    account_id = _activated(service, mailer)

    token = service.login(account_id, PASSWORD)
    assert service.check_token(account_id, token)

    service.logout(account_id, token)
    assert not service.check_token(account_id, token)


def test_login_wrong_password(service, mailer):
    account_id = _activated(service, mailer)
    with pytest.raises(AccountOperationError) as exc_info:
        service.login(account_id, "not the password")
    assert isinstance(exc_info.value.inner, PasswordIncorrectError)


def test_logout_unknown_token(service, mailer):
    account_id = _activated(service, mailer)
    with pytest.raises(AccountOperationError) as exc_info:
        service.logout(account_id, "forged")
    assert exc_info.value.code == "TOKEN_INCORRECT"


def test_token_expires_with_default_days(service, mailer, clock):
    account_id = _activated(service, mailer)
    token = service.login(account_id, PASSWORD)

    clock.advance(days=29)
    assert service.check_token(account_id, token)
    clock.advance(days=1)
    assert not service.check_token(account_id, token)


def test_profile_expiration_overrides_default(service, mailer, clock):
    account_id = service.register(EMAIL)
    profile = ActivationProfile(
        name="Alice", school_id=1, phone=1, password=PASSWORD,
        token_expiration_days=0,
    )
    service.activate(account_id, mailer.last_code(), profile)
    token = service.login(account_id, PASSWORD)

    clock.advance(days=3650)
    assert service.check_token(account_id, token)


def test_tokens_belong_to_their_account(service, mailer):
    alice = _activated(service, mailer)
    bob = service.register("bob@pkuschool.edu.cn")
    service.activate(bob, mailer.last_code(), PROFILE)

    token = service.login(alice, PASSWORD)

    assert service.check_token(alice, token)
    assert not service.check_token(bob, token)


# --- password reset -------------------------------------------------

def test_password_reset_flow(service, mailer):
    account_id = _activated(service, mailer)

    service.request_password_reset(account_id)
    email, code, purpose = mailer.sent[-1]
    assert email == EMAIL
    assert purpose is CodePurpose.RESET_PASSWORD

    service.reset_password(account_id, code, "a brand new password")

    assert service.login(account_id, "a brand new password")
    with pytest.raises(AccountOperationError):
        service.login(account_id, PASSWORD)


def test_reset_code_expires(service, mailer, clock):
    account_id = _activated(service, mailer)
    service.request_password_reset(account_id)
    code = mailer.last_code(CodePurpose.RESET_PASSWORD)

    clock.advance(minutes=15)

    with pytest.raises(AccountOperationError) as exc_info:
        service.reset_password(account_id, code, "a brand new password")
    # the sweep cleared the request before the transition ran
    assert exc_info.value.code == "PERMISSION_DENIED"


def test_reset_request_for_unverified_is_refused(service):
    account_id = service.register(EMAIL)
    with pytest.raises(AccountOperationError) as exc_info:
        service.request_password_reset(account_id)
    assert exc_info.value.code == "USER_UNVERIFIED"


# --- mail failures --------------------------------------------------

def test_mail_failure_keeps_registration(service, mailer):
    mailer.fail = True

    with pytest.raises(MailSendError):
        service.register(EMAIL)

    assert account_id_for(EMAIL) in service.store


def test_mail_failure_on_reset_keeps_request(service, mailer):
    account_id = _activated(service, mailer)
    mailer.fail = True

    with pytest.raises(MailSendError):
        service.request_password_reset(account_id)

    account = service.store.lookup(account_id)
    assert account.state.verify is not None


# --- housekeeping ---------------------------------------------------

def test_refresh_all_reports_dropped(service, mailer, clock):
    _activated(service, mailer)
    service.register("bob@pkuschool.edu.cn")
    service.register("carol@pkuschool.edu.cn")
    clock.advance(minutes=20)

    assert service.refresh_all() == 2
    assert len(service.store) == 1


def test_remove(service, mailer, sink):
    account_id = _activated(service, mailer)
    service.remove(account_id)
    assert account_id not in service.store
    assert sink.deleted == [account_id]
    with pytest.raises(AccountNotFoundError):
        service.remove(account_id)


def test_permissions_are_reported(service, mailer):
    account_id = _activated(service, mailer)
    account = service.store.lookup(account_id)
    with account.writing():
        account.state.attributes.permissions = frozenset({Permission.REVIEW})
    assert service.get_permissions(account_id) == {Permission.REVIEW}


def test_example_session(service, mailer):
    account_id = service.register("a@pkuschool.edu.cn")
    account = service.store.lookup(account_id)
    assert not account.is_verified
    assert account.id == account_id_for("a@pkuschool.edu.cn")

    service.activate(account_id, mailer.last_code(), PROFILE)
    assert service.store.lookup(account_id).id == account_id

    token = service.login(account_id, PASSWORD)
    service.logout(account_id, token)
    with pytest.raises(AccountOperationError) as exc_info:
        service.logout(account_id, token)
    assert exc_info.value.code == "TOKEN_INCORRECT"


def test_sweep_keeps_registration_inside_window(service, clock):
    account_id = service.register(EMAIL)
    clock.advance(minutes=14)
    service.refresh_all()
    assert account_id in service.store

    clock.advance(minutes=1)
    service.refresh_all()
    with pytest.raises(AccountNotFoundError):
        service.get_metadata(account_id)


# --- removal vs. running transitions --------------------------------

def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_remove_waits_for_running_transition(service, mailer, sink, monkeypatch):
    account_id = _activated(service, mailer)
    token = service.login(account_id, PASSWORD)
    account = service.store.lookup(account_id)

    entered, release = threading.Event(), threading.Event()
    real_verify = account_module.verify_password

    def slow_verify(password, hashed):
        entered.set()
        release.wait(5)
        return real_verify(password, hashed)

    monkeypatch.setattr(account_module, "verify_password", slow_verify)
    outcomes = {}

    def run(name, operation):
        try:
            outcomes[name] = operation()
        except AccountNotFoundError as e:
            outcomes[name] = e

    login = threading.Thread(target=run, args=("login", lambda: service.login(account_id, PASSWORD)))
    login.start()
    assert entered.wait(5)

    logout = threading.Thread(target=run, args=("logout", lambda: service.logout(account_id, token)))
    logout.start()
    remover = threading.Thread(target=run, args=("remove", lambda: service.remove(account_id)))
    remover.start()
    assert _wait_until(lambda: account._lock._writers_waiting >= 1)
    assert remover.is_alive()

    release.set()
    for t in (login, logout, remover):
        t.join(5)

    assert isinstance(outcomes["login"], str)
    assert outcomes["remove"] is None
    assert isinstance(outcomes["logout"], AccountNotFoundError)
    assert account.removed
    assert account_id not in service.store
    # the login's save precedes the delete; nothing is written afterwards
    assert sink.ops[-1] == ("delete", account_id)
    assert sink.ops.count(("delete", account_id)) == 1


def test_transition_on_removed_account_persists_nothing(service, mailer, sink):
    account_id = _activated(service, mailer)
    account = service.store.lookup(account_id)
    ops_before = len(sink.ops)

    # a caller that looked the account up just before it was removed
    service.store.remove(account_id)
    with account.writing():
        assert account.removed

    with pytest.raises(AccountNotFoundError):
        service.login(account_id, PASSWORD)
    assert sink.ops[ops_before:] == [("delete", account_id)]


def test_reregister_after_remove_starts_fresh(service, mailer):
    account_id = _activated(service, mailer)
    service.remove(account_id)

    assert service.register(EMAIL) == account_id
    assert not service.store.lookup(account_id).is_verified


# --- activation cost ------------------------------------------------

def test_refused_activation_skips_password_hashing(service, mailer, monkeypatch):
    account_id = service.register(EMAIL)
    hashed = []
    monkeypatch.setattr(account_module, "hash_password", lambda pw: hashed.append(pw) or "x")
    wrong = 100000 if mailer.last_code() != 100000 else 100001

    with pytest.raises(AccountOperationError) as exc_info:
        service.activate(account_id, wrong, PROFILE)

    assert exc_info.value.code == "VERIFICATION_CODE"
    assert hashed == []


def test_activation_of_verified_account_skips_password_hashing(service, mailer, monkeypatch):
    account_id = _activated(service, mailer)
    hashed = []
    monkeypatch.setattr(account_module, "hash_password", lambda pw: hashed.append(pw) or "x")

    with pytest.raises(AccountOperationError) as exc_info:
        service.activate(account_id, 123456, PROFILE)

    assert exc_info.value.code == "USER_REGISTERED"
    assert hashed == []
