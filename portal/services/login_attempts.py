"""
Per-account login attempt tracking with temporary lockout.

Locks an account for lockout_duration_ms once max_attempts failures have been
recorded. The lock is never lifted by a background job: the first read after
it has passed resets the record. A successful login must clear the record
with reset_login_attempts().

Records are kept in the durable store so a lockout survives a restart.
"""

import json
import math
import threading
from dataclasses import dataclass, asdict
from typing import Any, Callable, NamedTuple, Optional

from config.loader import DEFAULT_MAX_LOGIN_ATTEMPTS, DEFAULT_LOCKOUT_DURATION_MS
from portal.utils.timers import now_ms
from portal.utils.storage import KeyValueStore
from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)

LOGIN_ATTEMPTS_KEY = "portal_login_attempts"


@dataclass
class LoginAttemptRecord:
    count: int = 0
    last_attempt: Optional[int] = None
    locked_until: Optional[int] = None

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> 'LoginAttemptRecord':
        if not isinstance(data, dict):
            raise ValueError("attempt record is not an object")

        count = data.get('count')
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError("attempt record has invalid count")

        timestamps = {}
        for name in ('last_attempt', 'locked_until'):
            value = data.get(name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise ValueError(f"attempt record has invalid {name}")
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"attempt record has invalid {name}")
            timestamps[name] = int(value) if value is not None else None

        return cls(count=count, **timestamps)


class LockStatus(NamedTuple):
    is_locked: bool
    remaining_seconds: int


class LoginAttemptTracker:
    """Failed-login counters keyed by account identifier"""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = now_ms,
        max_attempts: int = DEFAULT_MAX_LOGIN_ATTEMPTS,
        lockout_duration_ms: int = DEFAULT_LOCKOUT_DURATION_MS,
    ):
        self.store = store
        self.clock = clock
        self.max_attempts = max_attempts
        self.lockout_duration_ms = lockout_duration_ms
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, store: KeyValueStore, **kwargs) -> 'LoginAttemptTracker':
        return cls(
            store=store,
            max_attempts=settings.max_login_attempts,
            lockout_duration_ms=settings.lockout_duration_ms,
            **kwargs,
        )

    def _key(self, account_id: str) -> str:
        return f"{LOGIN_ATTEMPTS_KEY}_{account_id}"

    def get_login_attempts(self, account_id: str) -> LoginAttemptRecord:
        """
        Get the attempt record for an account

        A record whose lockout has passed is deleted and read as zero, as is
        a record that cannot be parsed.
        """
        with self._lock:
            raw = self.store.get(self._key(account_id))
            if raw is None:
                return LoginAttemptRecord()

            try:
                record = LoginAttemptRecord.from_dict(json.loads(raw))
            except ValueError as e:
                logger.warning(f"Discarding unreadable login attempt record for {account_id}: {e}")
                self.reset_login_attempts(account_id)
                return LoginAttemptRecord()

            if record.locked_until is not None and self.clock() > record.locked_until:
                logger.info(f"Lockout expired for {account_id}")
                self.reset_login_attempts(account_id)
                return LoginAttemptRecord()

            return record

    def record_failed_login(self, account_id: str) -> LoginAttemptRecord:
        """Count a failed login. The max_attempts-th failure starts the lockout."""
        with self._lock:
            record = self.get_login_attempts(account_id)
            now = self.clock()

            record.count += 1
            record.last_attempt = now

            if record.count >= self.max_attempts:
                record.locked_until = now + self.lockout_duration_ms
                logger.warning(
                    f"Account {account_id} locked after {record.count} failed logins",
                    extra={"locked_until": record.locked_until},
                )

            self.store.set(self._key(account_id), json.dumps(record.to_dict()))
            return record

    def reset_login_attempts(self, account_id: str) -> None:
        """Clear failure count on successful login."""
        with self._lock:
            self.store.remove(self._key(account_id))

    def is_account_locked(self, account_id: str) -> LockStatus:
        """
        Check whether the account is locked

        Returns:
            LockStatus(is_locked, remaining_seconds); remaining_seconds is 0
            when unlocked
        """
        with self._lock:
            record = self.get_login_attempts(account_id)
            if record.locked_until is None:
                return LockStatus(False, 0)

            # get_login_attempts() already cleared locks that have passed
            remaining_ms = record.locked_until - self.clock()
            return LockStatus(True, max(0, math.ceil(remaining_ms / 1000)))

    def get_remaining_attempts(self, account_id: str) -> int:
        record = self.get_login_attempts(account_id)
        return max(0, self.max_attempts - record.count)
