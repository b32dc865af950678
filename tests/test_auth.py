import pytest

from conftest import ADMIN_PASSWORD
from speakmatch.auth import EXPIRED_SAVE_MESSAGE, AdminGate, validate_admin_password
from speakmatch.config import DEFAULT_CONFIG
from speakmatch.errors import AdminRequiredError
from speakmatch.models import now_ms

DIGEST = DEFAULT_CONFIG["admin_password_sha256"]
TIMEOUT = DEFAULT_CONFIG["admin_timeout_ms"]


def test_validate_admin_password():
    assert validate_admin_password(ADMIN_PASSWORD, DIGEST)
    assert not validate_admin_password("hikarifrench2026", DIGEST)
    assert not validate_admin_password("", DIGEST)


def test_login_and_logout(gate, store):
    assert gate.is_admin is False
    assert gate.login("wrong") is False
    assert store.get_admin_session() is None

    assert gate.login(ADMIN_PASSWORD) is True
    assert gate.is_admin is True
    assert store.get_admin_session()["role"] == "admin"

    gate.logout()
    assert gate.is_admin is False
    assert store.get_admin_session() is None


def test_admin_session_survives_restart(gate, store):
    gate.login(ADMIN_PASSWORD)
    assert AdminGate(store, DIGEST, TIMEOUT).is_admin is True


def test_session_expires_after_timeout(gate, store):
    gate.login(ADMIN_PASSWORD)
    last = store.get_admin_session()["lastActiveAt"]
    assert gate.session_valid(now=last + TIMEOUT - 1)
    assert not gate.session_valid(now=last + TIMEOUT)

    store.save_admin_session({"role": "admin", "lastActiveAt": now_ms() - TIMEOUT - 1})
    assert gate.poll() is True
    assert gate.is_admin is False
    # Already dropped; nothing new to report.
    assert gate.poll() is False


def test_record_activity_only_when_admin(gate, store):
    gate.record_activity()
    assert store.get_admin_session() is None
    gate.login(ADMIN_PASSWORD)
    store.save_admin_session({"role": "admin", "lastActiveAt": 0})
    gate.record_activity()
    assert store.get_admin_session()["lastActiveAt"] > 0


def test_require_runs_immediately_for_admin(gate):
    gate.login(ADMIN_PASSWORD)
    calls = []
    gate.require(lambda: calls.append("saved"))
    assert calls == ["saved"]


def test_require_parks_action_until_login(gate):
    calls = []
    with pytest.raises(AdminRequiredError, match=EXPIRED_SAVE_MESSAGE):
        gate.require(lambda: calls.append("saved"))
    assert calls == []

    gate.login("wrong")
    assert calls == []
    gate.login(ADMIN_PASSWORD)
    assert calls == ["saved"]
    assert gate.pending_action is None


def test_cancel_discards_pending_action(gate):
    calls = []
    with pytest.raises(AdminRequiredError):
        gate.require(lambda: calls.append("saved"))
    gate.cancel_pending()
    gate.login(ADMIN_PASSWORD)
    assert calls == []


def test_route_guard(gate):
    for screen in ("settings", "trash", "create"):
        assert gate.can_open(screen) is False
    assert gate.can_open("edit") is False
    assert gate.can_open("edit", editing=True) is True
    assert gate.can_open("dashboard") is True
    assert gate.can_open("study") is True

    gate.login(ADMIN_PASSWORD)
    assert gate.can_open("settings") is True
    assert gate.can_open("edit") is True
