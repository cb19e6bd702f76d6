"""
Session Manager - the single authenticated session of a portal client.

One session record lives under a fixed key in the session-lifetime store.
Expiry is checked lazily: any read that finds an expired (or unreadable)
record removes it and reports no session.

An inactivity watchdog polls the record on a repeating timer and tears the
session down once last_activity is older than the timeout. User activity
refreshes last_activity directly through record_activity(), independent of
the watchdog.

Usage:
    manager = SessionManager(store=InMemoryKeyValueStore(), on_inactive=redirect_to_login)
    session = manager.create_session({"accountNumber": "1234567", "name": "Ali"})
    manager.get_current_user()
    manager.destroy_session()
"""

import json
import math
import secrets
import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Optional

from config.loader import DEFAULT_SESSION_TIMEOUT_MS, DEFAULT_INACTIVITY_CHECK_INTERVAL_MS
from portal.utils import timers
from portal.utils.timers import now_ms
from portal.utils.storage import KeyValueStore
from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)

SESSION_KEY = "portal_session"
TOKEN_BYTES = 32


@dataclass
class Session:
    token: str
    user: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    expires_at: int = 0
    last_activity: int = 0

    def is_expired(self, now: int) -> bool:
        # The expiry millisecond itself is still valid
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> 'Session':
        """Build a Session from a stored record, raising ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError("session record is not an object")

        token = data.get('token')
        user = data.get('user')
        if not isinstance(token, str) or not token:
            raise ValueError("session record has no token")
        if not isinstance(user, dict):
            raise ValueError("session record has no user payload")

        timestamps = {}
        for name in ('created_at', 'expires_at', 'last_activity'):
            value = data.get(name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"session record has invalid {name}")
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"session record has invalid {name}")
            timestamps[name] = int(value)

        return cls(token=token, user=user, **timestamps)


class SessionManager:
    """Owns the session slot and its inactivity watchdog"""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = now_ms,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        scheduler: Callable[[Callable[[], None], int], Any] = timers.schedule,
        cancel_timer: Callable[[Any], None] = timers.cancel,
        on_inactive: Optional[Callable[[], None]] = None,
        timeout_ms: int = DEFAULT_SESSION_TIMEOUT_MS,
        check_interval_ms: int = DEFAULT_INACTIVITY_CHECK_INTERVAL_MS,
        key: str = SESSION_KEY,
    ):
        """
        Args:
            store: Session-lifetime key-value store
            clock: Returns the current time in epoch milliseconds
            random_bytes: Cryptographically secure byte source
            scheduler: schedule(callback, interval_ms) -> timer handle
            cancel_timer: cancel(handle) for handles returned by scheduler
            on_inactive: Navigation trigger called after an inactivity logout
            timeout_ms: Absolute session lifetime and inactivity limit
            check_interval_ms: Watchdog polling interval
            key: Storage key of the session slot
        """
        self.store = store
        self.clock = clock
        self.random_bytes = random_bytes
        self.scheduler = scheduler
        self.cancel_timer = cancel_timer
        self.on_inactive = on_inactive
        self.timeout_ms = timeout_ms
        self.check_interval_ms = check_interval_ms
        self.key = key

        self._lock = threading.RLock()
        self._timer = None

    @classmethod
    def from_settings(cls, settings, store: KeyValueStore, **kwargs) -> 'SessionManager':
        return cls(
            store=store,
            timeout_ms=settings.session_timeout_ms,
            check_interval_ms=settings.inactivity_check_interval_ms,
            **kwargs,
        )

    # ==================== Session Lifecycle ====================

    def generate_token(self) -> str:
        """64 hex characters from 32 random bytes"""
        return self.random_bytes(TOKEN_BYTES).hex()

    def create_session(self, user_data: Dict[str, Any]) -> Session:
        """
        Create a new session, replacing any existing one

        Args:
            user_data: Payload to keep with the session (account number, name, ...)

        Returns:
            The stored Session
        """
        # A failing random source must abort session creation
        token = self.generate_token()

        with self._lock:
            now = self.clock()
            session = Session(
                token=token,
                user=dict(user_data or {}),
                created_at=now,
                expires_at=now + self.timeout_ms,
                last_activity=now,
            )
            self._save(session)
            self.start_inactivity_timer()

        logger.info("Session created", extra={"expires_at": session.expires_at})
        return session

    def get_session(self) -> Optional[Session]:
        """
        Get the current session and mark it active

        Returns:
            Session, or None if absent, unreadable or expired
        """
        with self._lock:
            session = self._load()
            if session is None:
                return None

            session.last_activity = self.clock()
            self._save(session)
            return session

    def update_session(self, updates: Dict[str, Any]) -> None:
        """Merge fields into the session's user payload. No-op without a session."""
        with self._lock:
            session = self.get_session()
            if session is None:
                return

            session.user = {**session.user, **(updates or {})}
            session.last_activity = self.clock()
            self._save(session)

    def destroy_session(self) -> None:
        """Remove the session record and stop the watchdog. Idempotent."""
        with self._lock:
            self.store.remove(self.key)
            self.stop_inactivity_timer()

    def is_authenticated(self) -> bool:
        return self.get_session() is not None

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        session = self.get_session()
        return session.user if session else None

    def record_activity(self) -> None:
        """Refresh last_activity on a user interaction signal"""
        with self._lock:
            session = self._load()
            if session is None:
                return
            session.last_activity = self.clock()
            self._save(session)

    # ==================== Inactivity Watchdog ====================

    def start_inactivity_timer(self) -> None:
        """Start the watchdog, replacing any watchdog already running"""
        with self._lock:
            self.stop_inactivity_timer()
            self._timer = self.scheduler(self.check_inactivity, self.check_interval_ms)

    def stop_inactivity_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self.cancel_timer(self._timer)
                self._timer = None

    @property
    def watchdog_active(self) -> bool:
        return self._timer is not None

    def check_inactivity(self) -> None:
        """Watchdog tick: end the session once it has expired or been idle too long"""
        with self._lock:
            # Read without touching last_activity, polling is not user activity
            session = self._read()
            if session is None:
                self.stop_inactivity_timer()
                return

            now = self.clock()
            inactive_ms = now - session.last_activity
            if not session.is_expired(now) and inactive_ms <= self.timeout_ms:
                return

            logger.info("Session ended after inactivity", extra={"inactive_ms": inactive_ms})
            self.destroy_session()

        if self.on_inactive is not None:
            self.on_inactive()

    def close(self) -> None:
        """Stop background work on shutdown. The stored session is kept."""
        self.stop_inactivity_timer()

    # ==================== Persistence ====================

    def _read(self) -> Optional[Session]:
        """Stored session without the expiry check. Unreadable records are purged."""
        raw = self.store.get(self.key)
        if raw is None:
            return None

        try:
            return Session.from_dict(json.loads(raw))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.warning(f"Discarding unreadable session record: {e}")
            self.destroy_session()
            return None

    def _load(self) -> Optional[Session]:
        session = self._read()
        if session is None:
            return None

        if session.is_expired(self.clock()):
            logger.info("Session expired")
            self.destroy_session()
            return None

        return session

    def _save(self, session: Session) -> None:
        self.store.set(self.key, json.dumps(session.to_dict()))
