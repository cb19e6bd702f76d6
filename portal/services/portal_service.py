"""
Portal flows: login, profile update and logout.

Login consults the attempt tracker first, verifies credentials through an
injected verifier, then either records the failure or clears the counter,
opens a session and queues a login notification. A profile update needs the
current session user; it applies the changed fields and queues an update
notification.

Notifications run on a worker pool after the primary change is stored. Their
futures resolve to the provider response or raise the notification error;
neither outcome touches session or attempt state.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from portal.services.exceptions import (
    CredentialsNotConfiguredError,
    NotAuthenticatedError,
    NotificationError,
)
from portal.services.login_attempts import LoginAttemptTracker
from portal.services.notification_service import (
    LoginEvent,
    NotificationService,
    ProfileChange,
    ProfileUpdateEvent,
)
from portal.services.session_manager import Session, SessionManager
from portal.utils.ip_lookup import get_user_ip
from portal.utils.structured_logger import get_logger

logger = get_logger(__name__)

# verify(account_number, password) -> True if the credentials are valid
CredentialVerifier = Callable[[str, str], bool]


@dataclass
class LoginResult:
    success: bool
    session: Optional[Session] = None
    locked: bool = False
    remaining_seconds: int = 0
    remaining_attempts: Optional[int] = None
    notification: Optional[Future] = None
    error: Optional[str] = None


@dataclass
class ProfileUpdateResult:
    user: Dict[str, Any]
    changes: List[ProfileChange]
    notification: Optional[Future] = None


class PortalService:
    """Ties session, lockout and notification handling into the portal flows"""

    def __init__(
        self,
        sessions: SessionManager,
        attempts: LoginAttemptTracker,
        notifications: NotificationService,
        verify_credentials: Optional[CredentialVerifier] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        ip_lookup: Callable[[], str] = get_user_ip,
    ):
        self.sessions = sessions
        self.attempts = attempts
        self.notifications = notifications
        self.verify_credentials = verify_credentials
        self.ip_lookup = ip_lookup
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")

    # ==================== Login / Logout ====================

    def login(
        self,
        account_number: str,
        password: str,
        user_data: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        """
        Attempt a login for an account

        Args:
            account_number: Account identifier used for lockout tracking
            password: Password passed to the credential verifier
            user_data: Extra payload stored in the session (name, email, ...)
            ip_address: Caller IP for the login notification
            user_agent: Caller user agent for the login notification

        Returns:
            LoginResult

        Raises:
            CredentialsNotConfiguredError: no credential verifier was provided
        """
        if self.verify_credentials is None:
            raise CredentialsNotConfiguredError("Credential verification is not configured")

        lock = self.attempts.is_account_locked(account_number)
        if lock.is_locked:
            return LoginResult(
                success=False,
                locked=True,
                remaining_seconds=lock.remaining_seconds,
                remaining_attempts=0,
                error="Account temporarily locked",
            )

        if not self.verify_credentials(account_number, password):
            self.attempts.record_failed_login(account_number)
            lock = self.attempts.is_account_locked(account_number)
            logger.info(f"Failed login for {account_number}")
            return LoginResult(
                success=False,
                locked=lock.is_locked,
                remaining_seconds=lock.remaining_seconds,
                remaining_attempts=self.attempts.get_remaining_attempts(account_number),
                error="Invalid credentials",
            )

        self.attempts.reset_login_attempts(account_number)
        payload = {**(user_data or {}), "accountNumber": account_number}
        session = self.sessions.create_session(payload)

        future = None
        email = payload.get("email")
        if email:
            event = LoginEvent(
                user_email=email,
                account_number=account_number,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            future = self._dispatch("login", self._send_login_notification, event)

        return LoginResult(success=True, session=session, notification=future)

    def logout(self) -> None:
        self.sessions.destroy_session()

    # ==================== Profile ====================

    def update_profile(self, updates: Dict[str, Any]) -> ProfileUpdateResult:
        """
        Apply profile field updates to the session user

        Only fields whose value actually changes are applied and reported.

        Raises:
            NotAuthenticatedError: no valid session
        """
        user = self.sessions.get_current_user()
        if user is None:
            raise NotAuthenticatedError("No active session")

        changes = [
            ProfileChange(field=name, old_value=user.get(name), new_value=value)
            for name, value in (updates or {}).items()
            if user.get(name) != value
        ]
        if not changes:
            return ProfileUpdateResult(user=user, changes=[])

        self.sessions.update_session({c.field: c.new_value for c in changes})
        updated = self.sessions.get_current_user()
        if updated is None:
            raise NotAuthenticatedError("Session ended during update")

        future = None
        email = updated.get("email")
        if email:
            event = ProfileUpdateEvent(
                user_email=email,
                account_number=updated.get("accountNumber"),
                changes=changes,
            )
            future = self._dispatch(
                "profile update", self.notifications.send_profile_update_notification, event
            )

        return ProfileUpdateResult(user=updated, changes=changes, notification=future)

    # ==================== Notifications ====================

    def _send_login_notification(self, event: LoginEvent) -> str:
        # The IP lookup is a network call, so it runs off the login path
        if not event.ip_address:
            event.ip_address = self.ip_lookup()
        return self.notifications.send_login_notification(event)

    def _dispatch(self, kind: str, send: Callable[[Any], str], event: Any) -> Future:
        """Run a notification send in the background and log its outcome"""
        future = self.executor.submit(send, event)

        def _log_outcome(done: Future):
            error = done.exception()
            if error is None:
                return
            if isinstance(error, NotificationError):
                logger.warning(f"{kind.capitalize()} notification not sent: {error}")
            else:
                logger.error(f"{kind.capitalize()} notification crashed: {error}", exc_info=error)

        future.add_done_callback(_log_outcome)
        return future

    def shutdown(self, wait: bool = True) -> None:
        """Stop the watchdog and, if owned, the notification worker pool"""
        self.sessions.close()
        if self._owns_executor:
            self.executor.shutdown(wait=wait)
