"""
Notification Service - admin emails for login and profile-update events

Sends through the EmailJS REST API using requests directly. Every send is
checked in this order:
1. configuration present (otherwise NotificationConfigError, no quota used)
2. per-user throttle (otherwise NotificationRateLimited)
3. provider call (failure raises NotificationSendError; the throttle slot
   stays consumed)

Login and update notifications share one throttle budget per user.

Usage:
    from portal.services.notification_service import NotificationService, LoginEvent

    service = NotificationService(settings, throttle)
    service.send_login_notification(LoginEvent(user_email="a@b.com", account_number="1234567"))
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

from portal.services.exceptions import (
    NotificationConfigError,
    NotificationRateLimited,
    NotificationSendError,
)
from portal.services.notification_throttle import NotificationThrottle
from portal.utils.circuit_breaker import CircuitBreaker, emailjs_circuit
from portal.utils.retry_utils import retry_on_network_error
from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)

LOGIN_SUBJECT = "New Login Detected"
UPDATE_SUBJECT = "Profile Update Notification"
NOT_SPECIFIED = "غير محدد"


@dataclass
class LoginEvent:
    user_email: str
    account_number: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class ProfileChange:
    field: str
    old_value: Any = None
    new_value: Any = None


@dataclass
class ProfileUpdateEvent:
    user_email: str
    account_number: Optional[str] = None
    changes: List[ProfileChange] = field(default_factory=list)


def format_changes(changes: List[ProfileChange]) -> str:
    """One line per change: 'field: old ← new'"""
    lines = []
    for change in changes:
        old_value = change.old_value or NOT_SPECIFIED
        new_value = change.new_value or NOT_SPECIFIED
        lines.append(f"{change.field}: {old_value} ← {new_value}")
    return "\n".join(lines)


class EmailJSClient:
    """Minimal client for the EmailJS send endpoint"""

    API_URL = "https://api.emailjs.com/api/v1.0/email/send"

    def __init__(
        self,
        service_id: str,
        public_key: str,
        private_key: Optional[str] = None,
        timeout: int = 30,
        circuit: CircuitBreaker = emailjs_circuit,
        session: Optional[requests.Session] = None,
    ):
        self.service_id = service_id
        self.public_key = public_key
        self.private_key = private_key
        self.timeout = timeout
        self.circuit = circuit
        self.session = session or requests.Session()

    def send(self, template_id: str, template_params: Dict[str, Any]) -> str:
        """
        Send one templated email

        Returns:
            The provider's response text (normally "OK")

        Raises:
            NotificationSendError: circuit open, transport failure or non-2xx response
        """
        if not self.circuit.can_execute():
            logger.warning("EmailJS circuit breaker OPEN, skipping send")
            raise NotificationSendError("EmailJS circuit breaker open")

        payload = {
            "service_id": self.service_id,
            "template_id": template_id,
            "user_id": self.public_key,
            "template_params": template_params,
        }
        if self.private_key:
            payload["accessToken"] = self.private_key

        try:
            response = self._post_with_retry(payload)
        except requests.exceptions.RequestException as e:
            self.circuit.record_failure()
            raise NotificationSendError(f"EmailJS request failed: {e}") from e

        if response.status_code != 200:
            self.circuit.record_failure()
            raise NotificationSendError(f"EmailJS error: {response.status_code} - {response.text[:200]}")

        self.circuit.record_success()
        return response.text

    @retry_on_network_error(max_attempts=3, min_wait=1, max_wait=8)
    def _post_with_retry(self, payload: dict):
        """POST with retry on transient network errors."""
        return self.session.post(self.API_URL, json=payload, timeout=self.timeout)


class NotificationService:
    """Throttled admin notifications for portal events"""

    def __init__(
        self,
        settings,
        throttle: NotificationThrottle,
        client: Optional[EmailJSClient] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            settings: PortalSettings instance
            throttle: Shared per-user throttle
            client: EmailJS client (built from settings when omitted)
            now: Returns the current aware datetime, used for the email timestamp
        """
        self.settings = settings
        self.throttle = throttle
        self.now = now

        if client is None and settings.emailjs_service_id and settings.emailjs_public_key:
            client = EmailJSClient(
                service_id=settings.emailjs_service_id,
                public_key=settings.emailjs_public_key,
                private_key=settings.emailjs_private_key,
                timeout=settings.notification_timeout_s,
            )
        self.client = client

    def validate_config(self) -> Dict[str, Any]:
        """Report every missing notification setting"""
        errors = self.settings.missing_notification_settings()
        return {"is_valid": not errors, "errors": errors}

    def _require_config(self, template_id: Optional[str]) -> None:
        if self.client is None or not template_id:
            logger.error("EmailJS not properly configured")
            raise NotificationConfigError(self.settings.missing_notification_settings())

    def _check_rate_limit(self, user_email: str) -> None:
        if self.throttle.is_rate_limited(user_email):
            raise NotificationRateLimited(user_email)

    def format_timestamp(self) -> str:
        """Current time in the configured timezone, e.g. 'Friday, 17 October 2026 14:03:00 EEST'"""
        try:
            tz = ZoneInfo(self.settings.notification_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {self.settings.notification_timezone}, using UTC")
            tz = timezone.utc
        return self.now().astimezone(tz).strftime("%A, %d %B %Y %H:%M:%S %Z")

    def _send(self, kind: str, template_id: str, template_params: Dict[str, Any]) -> str:
        try:
            response = self.client.send(template_id, template_params)
        except NotificationSendError as e:
            logger.error(f"Failed to send {kind} notification: {e}")
            raise

        logger.info(f"{kind.capitalize()} notification sent successfully: {response}")
        return response

    def send_login_notification(self, event: LoginEvent) -> str:
        """Notify the admin of a successful login"""
        template_id = self.settings.emailjs_template_id_login
        self._require_config(template_id)
        self._check_rate_limit(event.user_email)

        template_params = {
            "to_email": self.settings.admin_email,
            "subject": LOGIN_SUBJECT,
            "user_email": event.user_email,
            "account_number": event.account_number or "N/A",
            "timestamp": self.format_timestamp(),
            "ip_address": event.ip_address or "Unknown",
            "user_agent": event.user_agent or "Unknown",
        }
        return self._send("login", template_id, template_params)

    def send_profile_update_notification(self, event: ProfileUpdateEvent) -> str:
        """Notify the admin of a profile update with the list of changes"""
        template_id = self.settings.emailjs_template_id_update
        self._require_config(template_id)
        self._check_rate_limit(event.user_email)

        template_params = {
            "to_email": self.settings.admin_email,
            "subject": UPDATE_SUBJECT,
            "user_email": event.user_email,
            "account_number": event.account_number or "N/A",
            "timestamp": self.format_timestamp(),
            "changes_list": format_changes(event.changes),
            "total_changes": len(event.changes),
        }
        return self._send("profile update", template_id, template_params)
