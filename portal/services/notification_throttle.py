"""
Per-user rolling-window throttle for outbound notifications.

Each permitted check records a send timestamp; a user may have at most
`limit` timestamps inside the trailing window. Checking is reserving: call
is_rate_limited() exactly once per send attempt. A slot stays used even if
the send later fails.

State lives in process memory only, so a restart resets every budget.
"""

import threading
from typing import Callable, Dict, List, Optional

from config.loader import DEFAULT_EMAIL_RATE_LIMIT, DEFAULT_EMAIL_RATE_LIMIT_WINDOW_MS
from portal.utils.timers import now_ms
from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)


class NotificationThrottle:
    """Rolling-window send counter keyed by user identifier"""

    def __init__(
        self,
        clock: Callable[[], int] = now_ms,
        limit: int = DEFAULT_EMAIL_RATE_LIMIT,
        window_ms: int = DEFAULT_EMAIL_RATE_LIMIT_WINDOW_MS,
    ):
        self.clock = clock
        self.limit = limit
        self.window_ms = window_ms
        self._history: Dict[str, List[int]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> 'NotificationThrottle':
        return cls(
            limit=settings.email_rate_limit,
            window_ms=settings.email_rate_limit_window_ms,
            **kwargs,
        )

    def _recent(self, user_id: str, now: int) -> List[int]:
        return [ts for ts in self._history.get(user_id, []) if now - ts < self.window_ms]

    def _sweep(self, now: int) -> None:
        """Drop users whose every send has left the window"""
        stale = [uid for uid, sends in self._history.items() if not sends or now - sends[-1] >= self.window_ms]
        for uid in stale:
            del self._history[uid]

    def is_rate_limited(self, user_id: str) -> bool:
        """
        Check the user's budget and reserve a slot if one is free

        Returns:
            True if the limit is reached (nothing recorded),
            False if the send is permitted (one slot consumed)
        """
        with self._lock:
            now = self.clock()
            recent = self._recent(user_id, now)
            self._sweep(now)

            if len(recent) >= self.limit:
                self._history[user_id] = recent
                logger.warning(f"Email rate limit exceeded for user: {user_id}")
                return True

            recent.append(now)
            self._history[user_id] = recent
            return False

    def get_usage(self, user_id: str) -> Dict:
        """Current usage for a user, without consuming quota"""
        with self._lock:
            recent = self._recent(user_id, self.clock())
            if not recent:
                self._history.pop(user_id, None)
            current = len(recent)

        return {
            'user_id': user_id,
            'current': current,
            'limit': self.limit,
            'remaining': max(0, self.limit - current),
            'window_ms': self.window_ms,
        }

    def reset(self, user_id: Optional[str] = None) -> None:
        """Forget send history for one user, or for everyone"""
        with self._lock:
            if user_id is None:
                self._history.clear()
            else:
                self._history.pop(user_id, None)
