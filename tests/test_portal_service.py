"""
Tests for the portal flows.

Tests cover:
- Login: lockout check, failed attempts, success, notification dispatch
- Logout
- Profile updates and their notifications
- Notification failures never undoing the primary change
"""

from concurrent.futures import Future
from unittest.mock import MagicMock

import pytest

from portal.services.exceptions import (
    CredentialsNotConfiguredError,
    NotAuthenticatedError,
    NotificationRateLimited,
    NotificationSendError,
)
from portal.services.portal_service import PortalService


USER = {"name": "Ali", "email": "ali@example.com"}


# ==================== Login ====================

class TestLogin:
    """Tests for PortalService.login."""

    def test_success_creates_session(self, portal, session_manager):
        result = portal.login("1234567", "Secret#123", user_data=USER)

        assert result.success is True
        assert result.error is None
        assert result.session.user == {**USER, "accountNumber": "1234567"}
        assert session_manager.get_current_user()["accountNumber"] == "1234567"

    def test_success_sends_login_notification(self, portal, email_client):
        result = portal.login("1234567", "Secret#123", user_data=USER, user_agent="pytest")

        assert isinstance(result.notification, Future)
        assert result.notification.result() == "OK"
        template_id, params = email_client.send.call_args.args
        assert template_id == "template_login"
        assert params["user_email"] == "ali@example.com"
        assert params["account_number"] == "1234567"
        assert params["user_agent"] == "pytest"

    def test_ip_looked_up_when_not_given(self, portal, email_client):
        portal.login("1234567", "Secret#123", user_data=USER)

        assert email_client.send.call_args.args[1]["ip_address"] == "203.0.113.7"

    def test_given_ip_skips_lookup(self, portal, email_client):
        portal.ip_lookup = MagicMock()

        portal.login("1234567", "Secret#123", user_data=USER, ip_address="198.51.100.1")

        portal.ip_lookup.assert_not_called()
        assert email_client.send.call_args.args[1]["ip_address"] == "198.51.100.1"

    def test_no_notification_without_email(self, portal, email_client):
        result = portal.login("1234567", "Secret#123", user_data={"name": "Ali"})

        assert result.success is True
        assert result.notification is None
        email_client.send.assert_not_called()

    def test_success_resets_attempts(self, portal, tracker):
        portal.login("1234567", "wrong")
        portal.login("1234567", "wrong")

        portal.login("1234567", "Secret#123")

        assert tracker.get_remaining_attempts("1234567") == 5

    def test_failure_records_attempt(self, portal, session_manager):
        result = portal.login("1234567", "wrong")

        assert result.success is False
        assert result.error == "Invalid credentials"
        assert result.locked is False
        assert result.remaining_attempts == 4
        assert session_manager.get_session() is None

    def test_fifth_failure_locks(self, portal):
        for _ in range(4):
            portal.login("9999999", "wrong")

        result = portal.login("9999999", "wrong")

        assert result.locked is True
        assert result.remaining_seconds == 300
        assert result.remaining_attempts == 0

    def test_locked_account_rejects_valid_password(self, portal, tracker, session_manager):
        for _ in range(5):
            portal.login("9999999", "wrong")

        result = portal.login("9999999", "Other#456")

        assert result.success is False
        assert result.locked is True
        assert result.error == "Account temporarily locked"
        assert session_manager.get_session() is None
        # A rejected attempt while locked is not counted
        assert tracker.get_login_attempts("9999999").count == 5

    def test_login_possible_after_lockout(self, portal, clock):
        for _ in range(5):
            portal.login("9999999", "wrong")

        clock.advance(300_001)

        assert portal.login("9999999", "Other#456").success is True

    def test_without_verifier(self, session_manager, tracker, notification_service):
        portal = PortalService(session_manager, tracker, notification_service)

        with pytest.raises(CredentialsNotConfiguredError):
            portal.login("1234567", "Secret#123")
        portal.shutdown()

    def test_notification_failure_keeps_session(self, portal, email_client, session_manager):
        email_client.send.side_effect = NotificationSendError("provider down")

        result = portal.login("1234567", "Secret#123", user_data=USER)

        assert result.success is True
        assert isinstance(result.notification.exception(), NotificationSendError)
        assert session_manager.is_authenticated() is True

    def test_rate_limited_notification_keeps_session(self, portal, session_manager):
        for _ in range(5):
            portal.login("1234567", "Secret#123", user_data=USER)

        result = portal.login("1234567", "Secret#123", user_data=USER)

        assert result.success is True
        assert isinstance(result.notification.exception(), NotificationRateLimited)
        assert session_manager.is_authenticated() is True


class TestLogout:

    def test_logout_destroys_session(self, portal, session_manager, scheduler):
        portal.login("1234567", "Secret#123")

        portal.logout()

        assert session_manager.get_session() is None
        assert scheduler.active == []

    def test_logout_twice(self, portal):
        portal.logout()
        portal.logout()


# ==================== Profile ====================

class TestUpdateProfile:
    """Tests for PortalService.update_profile."""

    def test_requires_session(self, portal):
        with pytest.raises(NotAuthenticatedError):
            portal.update_profile({"name": "x"})

    def test_applies_changes(self, portal, session_manager):
        portal.login("1234567", "Secret#123", user_data=USER)

        result = portal.update_profile({"name": "Ali Hassan", "city": "Cairo"})

        assert result.user["name"] == "Ali Hassan"
        assert result.user["city"] == "Cairo"
        assert session_manager.get_current_user()["city"] == "Cairo"
        assert [(c.field, c.old_value, c.new_value) for c in result.changes] == [
            ("name", "Ali", "Ali Hassan"),
            ("city", None, "Cairo"),
        ]

    def test_unchanged_fields_ignored(self, portal, email_client):
        portal.login("1234567", "Secret#123", user_data=USER)
        email_client.send.reset_mock()

        result = portal.update_profile({"name": "Ali"})

        assert result.changes == []
        assert result.notification is None
        email_client.send.assert_not_called()

    def test_sends_update_notification(self, portal, email_client):
        portal.login("1234567", "Secret#123", user_data=USER)

        result = portal.update_profile({"phone": "01000000000"})

        assert result.notification.result() == "OK"
        template_id, params = email_client.send.call_args.args
        assert template_id == "template_update"
        assert params["changes_list"] == "phone: غير محدد ← 01000000000"
        assert params["total_changes"] == 1

    def test_new_email_receives_notification(self, portal, email_client):
        portal.login("1234567", "Secret#123", user_data=USER)

        portal.update_profile({"email": "new@example.com"})

        assert email_client.send.call_args.args[1]["user_email"] == "new@example.com"

    def test_notification_failure_keeps_update(self, portal, email_client, session_manager):
        portal.login("1234567", "Secret#123", user_data=USER)
        email_client.send.side_effect = NotificationSendError("provider down")

        result = portal.update_profile({"name": "Ali Hassan"})

        assert isinstance(result.notification.exception(), NotificationSendError)
        assert session_manager.get_current_user()["name"] == "Ali Hassan"

    def test_expired_session_rejected(self, portal, clock):
        portal.login("1234567", "Secret#123", user_data=USER)
        clock.advance(1_800_001)

        with pytest.raises(NotAuthenticatedError):
            portal.update_profile({"name": "x"})

    def test_session_ending_mid_update_rejected(self, portal, session_manager, email_client, monkeypatch):
        portal.login("1234567", "Secret#123", user_data=USER)
        email_client.send.reset_mock()
        monkeypatch.setattr(session_manager, "get_current_user", MagicMock(side_effect=[dict(USER), None]))

        with pytest.raises(NotAuthenticatedError):
            portal.update_profile({"name": "Ali Hassan"})

        email_client.send.assert_not_called()


class TestShutdown:

    def test_stops_watchdog(self, portal, scheduler):
        portal.login("1234567", "Secret#123")

        portal.shutdown()

        assert scheduler.active == []

    def test_owned_executor_is_shut_down(self, session_manager, tracker, notification_service):
        portal = PortalService(session_manager, tracker, notification_service)

        portal.shutdown()

        with pytest.raises(RuntimeError):
            portal.executor.submit(lambda: None)
