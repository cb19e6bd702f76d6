"""
Key-value storage for portal state.

Two logical scopes are used by the portal:
- session-lifetime store: holds the single authenticated session record
- durable store: holds login attempt records and survives restarts

Each scope sits behind the KeyValueStore interface so tests can substitute
the in-memory store for a real backend.

Usage:
    from portal.utils.storage import build_session_store, build_attempts_store

    session_store = build_session_store(settings)
    attempts_store = build_attempts_store(settings)
"""

import os
import json
import tempfile
import threading
import logging
from pathlib import Path
from typing import Dict, Optional

import redis

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Base class for string key-value storage"""

    backend = "base"

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str):
        raise NotImplementedError

    def remove(self, key: str):
        raise NotImplementedError

    def is_healthy(self) -> bool:
        return True


class InMemoryKeyValueStore(KeyValueStore):
    """In-memory storage, scoped to the running process"""

    backend = "memory"

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def remove(self, key: str):
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())

    def clear(self):
        self._data.clear()


class FileKeyValueStore(KeyValueStore):
    """JSON-file storage that survives process restarts.

    The whole store is one JSON object. Every write rewrites the file through
    a temp file and os.replace, so a crash never leaves a half-written store.
    A file that cannot be parsed reads as an empty store.
    """

    backend = "file"

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Store file {self.path} is corrupt, treating as empty: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Store file {self.path} does not hold an object, treating as empty")
            return {}
        return data

    def _write(self, data: Dict[str, str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str):
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed durable storage.

    Errors from Redis propagate to the caller; reads and writes are never
    silently redirected to another backend.
    """

    backend = "redis"

    def __init__(self, redis_url: str = "redis://localhost:6379", prefix: str = "portal:"):
        # Log connection (mask password)
        safe_url = redis_url.split('@')[-1] if '@' in redis_url else redis_url
        logger.info(f"Connecting to Redis at {safe_url}")

        self.prefix = prefix
        self._redis = redis.from_url(redis_url, decode_responses=True)

    def is_healthy(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False

    def get(self, key: str) -> Optional[str]:
        return self._redis.get(self.prefix + key)

    def set(self, key: str, value: str):
        self._redis.set(self.prefix + key, value)

    def remove(self, key: str):
        self._redis.delete(self.prefix + key)


def build_session_store(settings) -> KeyValueStore:
    """Create the session-lifetime store.

    Defaults to process memory, the closest match to a browser session scope.
    SESSION_STORE=file keeps the session across restarts of the process.
    """
    if settings.session_store == "file":
        path = settings.session_store_path or ".portal/session.json"
        logger.info(f"Using file session store at {path}")
        return FileKeyValueStore(path)

    if settings.session_store != "memory":
        logger.warning(f"Unknown session store '{settings.session_store}', using memory")
    return InMemoryKeyValueStore()


def build_attempts_store(settings) -> KeyValueStore:
    """Create the durable store for login attempt records"""
    if settings.redis_url:
        return RedisKeyValueStore(settings.redis_url)

    logger.info(
        f"Using file store for login attempts at {settings.attempts_store_path} "
        f"(set REDIS_URL to share across instances)"
    )
    return FileKeyValueStore(settings.attempts_store_path)


def get_store_info(store: KeyValueStore) -> dict:
    """Backend name and health of a store, for the readiness report"""
    return {
        "backend": store.backend,
        "healthy": store.is_healthy(),
    }
