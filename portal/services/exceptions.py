"""
Exceptions raised by portal services.

Lockout and rate limiting are reported as status values, not exceptions.
The notification errors below surface only on the notification path and
never undo session or attempt-tracking state.
"""


class PortalError(Exception):
    """Base class for portal service errors"""


class NotAuthenticatedError(PortalError):
    """No valid session exists for an operation that needs one"""


class NotificationError(PortalError):
    """Base class for notification failures"""


class NotificationConfigError(NotificationError):
    """The notification provider is not configured"""

    def __init__(self, missing=None):
        self.missing = list(missing or [])
        detail = f": {', '.join(self.missing)}" if self.missing else ""
        super().__init__(f"EmailJS configuration missing{detail}")


class NotificationRateLimited(NotificationError):
    """The user's notification quota for the current window is used up"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Rate limit exceeded")


class NotificationSendError(NotificationError):
    """The provider did not accept the notification"""


class CredentialsNotConfiguredError(PortalError):
    """No credential verifier has been provided to the portal"""
