"""
Admin gating: password check and a sliding-expiry admin session.

Management screens (create, edit, trash, settings) are unlocked with a
single shared password. The session is persisted so it survives a restart,
and expires after a period without activity.
"""

import hashlib
import hmac
from typing import Callable, Optional

from .errors import AdminRequiredError
from .models import now_ms
from .storage import Store

ADMIN_ROLE = "admin"
EXPIRED_SAVE_MESSAGE = "Session expired. Re-enter password to save."
WRONG_PASSWORD_MESSAGE = "Incorrect password"

# Screens that need admin rights to be shown.
ADMIN_SCREENS = {"settings", "trash", "create"}


def validate_admin_password(candidate: str, expected_sha256: str) -> bool:
    """
    Compare a typed password against the configured SHA-256 digest.
    """
    if not candidate:
        return False
    digest = hashlib.sha256(candidate.encode("utf-8")).hexdigest()
    return hmac.compare_digest(digest, expected_sha256)


class AdminGate:
    """
    Tracks whether admin mode is on and runs actions that need it.

    - login() checks the password and starts the session,
    - record_activity() pushes the expiry forward,
    - poll() drops admin mode once the session has gone stale,
    - require() either runs an action now or parks it until the next login.
    """

    def __init__(self, store: Store, password_sha256: str, timeout_ms: int):
        self.store = store
        self.password_sha256 = password_sha256
        self.timeout_ms = timeout_ms
        self.pending_action: Optional[Callable[[], None]] = None
        self.is_admin = self.session_valid()

    def session_valid(self, now: Optional[int] = None) -> bool:
        """
        True when a stored admin session exists and has not expired.
        """
        session = self.store.get_admin_session()
        if not session or session.get("role") != ADMIN_ROLE:
            return False
        now = now_ms() if now is None else now
        try:
            return now - int(session.get("lastActiveAt", 0)) < self.timeout_ms
        except (TypeError, ValueError):
            return False

    def login(self, password: str) -> bool:
        """
        Start an admin session if the password is right.

        A pending action parked by require() runs right after a successful
        login.
        """
        if not validate_admin_password(password, self.password_sha256):
            print("[Auth] Admin login rejected")
            return False
        self.store.save_admin_session({"role": ADMIN_ROLE, "lastActiveAt": now_ms()})
        self.is_admin = True
        print("[Auth] Admin login")
        action, self.pending_action = self.pending_action, None
        if action:
            action()
        return True

    def logout(self) -> None:
        self.store.clear_admin_session()
        self.is_admin = False
        self.pending_action = None
        print("[Auth] Admin logout")

    def record_activity(self) -> None:
        if self.is_admin:
            self.store.save_admin_session({"role": ADMIN_ROLE, "lastActiveAt": now_ms()})

    def poll(self) -> bool:
        """
        Re-check the stored session.

        return: True if admin mode was just switched off because it expired.
        """
        if self.is_admin and not self.session_valid():
            self.is_admin = False
            return True
        return False

    def require(self, action: Callable[[], None]) -> None:
        """
        Run action now if admin, otherwise keep it for after login.

        raises AdminRequiredError: when the action was parked, so the caller
            knows to open the login prompt.
        """
        self.record_activity()
        if self.is_admin:
            action()
            return
        self.pending_action = action
        raise AdminRequiredError(EXPIRED_SAVE_MESSAGE)

    def cancel_pending(self) -> None:
        self.pending_action = None

    def can_open(self, screen: str, editing: bool = False) -> bool:
        """
        Route guard for management screens.

        The editor stays reachable without admin when a quiz is already open
        in it; saving still goes through require().
        """
        if screen in ADMIN_SCREENS:
            return self.is_admin
        if screen == "edit":
            return self.is_admin or editing
        return True
