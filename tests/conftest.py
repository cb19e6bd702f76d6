"""
Test Configuration and Fixtures

Central configuration for pytest including:
- A controllable millisecond clock
- A manual scheduler so watchdog ticks run only when a test fires them
- In-memory stores and ready-wired services
- A FastAPI TestClient around an app built from those services

Usage:
    All fixtures defined here are automatically available to all tests.
"""

import os
import sys
from concurrent.futures import Future
from unittest.mock import MagicMock

import pytest

# Ensure the project root is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.loader import PortalSettings
from portal.services.login_attempts import LoginAttemptTracker
from portal.services.notification_service import NotificationService
from portal.services.notification_throttle import NotificationThrottle
from portal.services.portal_service import PortalService
from portal.services.session_manager import SessionManager
from portal.utils.storage import InMemoryKeyValueStore
from main import create_app

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class ManualScheduler:
    """Stands in for portal.utils.timers.schedule/cancel."""

    def __init__(self):
        self.timers = []

    def schedule(self, callback, interval_ms):
        handle = {"callback": callback, "interval_ms": interval_ms, "cancelled": False}
        self.timers.append(handle)
        return handle

    def cancel(self, handle):
        handle["cancelled"] = True

    @property
    def active(self):
        return [t for t in self.timers if not t["cancelled"]]

    def tick(self):
        """Fire every active timer once"""
        for handle in list(self.active):
            handle["callback"]()


class ImmediateExecutor:
    """Runs submitted work inline and returns a completed Future."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


# ==================== Core Fixtures ====================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def session_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def attempts_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def settings():
    """Settings with EmailJS fully configured."""
    return PortalSettings({
        'notifications': {
            'admin_email': 'security@example.com',
            'emailjs': {
                'service_id': 'service_test',
                'template_id_login': 'template_login',
                'template_id_update': 'template_update',
                'public_key': 'public_test',
            },
        },
    })


@pytest.fixture
def on_inactive():
    return MagicMock()


@pytest.fixture
def session_manager(session_store, clock, scheduler, on_inactive):
    return SessionManager(
        store=session_store,
        clock=clock,
        scheduler=scheduler.schedule,
        cancel_timer=scheduler.cancel,
        on_inactive=on_inactive,
    )


@pytest.fixture
def tracker(attempts_store, clock):
    return LoginAttemptTracker(store=attempts_store, clock=clock)


@pytest.fixture
def throttle(clock):
    return NotificationThrottle(clock=clock)


@pytest.fixture
def email_client():
    client = MagicMock()
    client.send.return_value = "OK"
    return client


@pytest.fixture
def notification_service(settings, throttle, email_client):
    return NotificationService(settings, throttle, client=email_client)


@pytest.fixture
def credentials():
    """Valid credentials accepted by the test verifier."""
    return {"1234567": "Secret#123", "9999999": "Other#456"}


@pytest.fixture
def portal(session_manager, tracker, notification_service, credentials):
    return PortalService(
        sessions=session_manager,
        attempts=tracker,
        notifications=notification_service,
        verify_credentials=lambda account, password: credentials.get(account) == password,
        executor=ImmediateExecutor(),
        ip_lookup=lambda: "203.0.113.7",
    )


@pytest.fixture
def test_client(portal, settings):
    """TestClient around an app wired with the in-memory portal."""
    from fastapi.testclient import TestClient

    app = create_app(settings=settings, portal=portal)
    return TestClient(app)
