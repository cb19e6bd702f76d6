"""
Configuration Loader - Loads portal security settings

Usage:
    from config.loader import get_settings

    settings = get_settings()
    print(settings.session_timeout_ms)
    print(settings.max_login_attempts)

Values come from config/portal.yaml, whose entries reference environment
variables as ${VAR_NAME} or ${VAR_NAME:-default_value}. Numeric settings that
are unset, empty, non-numeric or non-positive fall back to the built-in
defaults instead of raising.
"""

import os
import re
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT_MS = 30 * 60 * 1000  # 30 minutes
DEFAULT_INACTIVITY_CHECK_INTERVAL_MS = 60 * 1000  # 1 minute
DEFAULT_MAX_LOGIN_ATTEMPTS = 5
DEFAULT_LOCKOUT_DURATION_MS = 5 * 60 * 1000  # 5 minutes
DEFAULT_EMAIL_RATE_LIMIT = 5  # Max emails per user per window
DEFAULT_EMAIL_RATE_LIMIT_WINDOW_MS = 60 * 60 * 1000  # 1 hour
DEFAULT_NOTIFICATION_TIMEOUT_S = 30
DEFAULT_NOTIFICATION_TIMEZONE = "Africa/Cairo"
DEFAULT_ATTEMPTS_STORE_PATH = ".portal/login_attempts.json"

CONFIG_PATH = Path(__file__).parent / "portal.yaml"

_LEADING_INT = re.compile(r'^[+-]?\d+')


def parse_int(value: Any, default: int) -> int:
    """
    Parse an integer setting, falling back to the default.

    Takes the leading decimal integer of a string ("90s" -> 90). Unset,
    empty, non-numeric and non-positive values return the default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default

    match = _LEADING_INT.match(str(value).strip())
    if not match:
        return default

    parsed = int(match.group(0))
    return parsed if parsed > 0 else default


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class PortalSettings:
    """Session, lockout and notification settings for the portal"""

    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        """
        Initialize settings from a raw (already substituted) config mapping

        Args:
            raw: Nested mapping shaped like config/portal.yaml
        """
        self.raw = raw or {}

        session = self.raw.get('session') or {}
        login = self.raw.get('login') or {}
        notifications = self.raw.get('notifications') or {}
        emailjs = notifications.get('emailjs') or {}
        logging_cfg = self.raw.get('logging') or {}

        # Session
        self.session_timeout_ms = parse_int(session.get('timeout_ms'), DEFAULT_SESSION_TIMEOUT_MS)
        self.inactivity_check_interval_ms = parse_int(
            session.get('inactivity_check_interval_ms'), DEFAULT_INACTIVITY_CHECK_INTERVAL_MS
        )
        self.session_store = (_optional_str(session.get('store')) or 'memory').lower()
        self.session_store_path = _optional_str(session.get('store_path'))

        # Login attempts
        self.max_login_attempts = parse_int(login.get('max_attempts'), DEFAULT_MAX_LOGIN_ATTEMPTS)
        self.lockout_duration_ms = parse_int(login.get('lockout_duration_ms'), DEFAULT_LOCKOUT_DURATION_MS)
        self.attempts_store_path = _optional_str(login.get('store_path')) or DEFAULT_ATTEMPTS_STORE_PATH
        self.redis_url = _optional_str(login.get('redis_url'))

        # Notifications
        self.email_rate_limit = parse_int(notifications.get('rate_limit'), DEFAULT_EMAIL_RATE_LIMIT)
        self.email_rate_limit_window_ms = parse_int(
            notifications.get('rate_limit_window_ms'), DEFAULT_EMAIL_RATE_LIMIT_WINDOW_MS
        )
        self.notification_timeout_s = parse_int(notifications.get('timeout_s'), DEFAULT_NOTIFICATION_TIMEOUT_S)
        self.notification_timezone = (
            _optional_str(notifications.get('timezone')) or DEFAULT_NOTIFICATION_TIMEZONE
        )
        self.admin_email = _optional_str(notifications.get('admin_email'))
        self.emailjs_service_id = _optional_str(emailjs.get('service_id'))
        self.emailjs_template_id_login = _optional_str(emailjs.get('template_id_login'))
        self.emailjs_template_id_update = _optional_str(emailjs.get('template_id_update'))
        self.emailjs_public_key = _optional_str(emailjs.get('public_key'))
        self.emailjs_private_key = _optional_str(emailjs.get('private_key'))

        # Logging
        self.log_level = (_optional_str(logging_cfg.get('level')) or 'INFO').upper()
        self.log_format = (_optional_str(logging_cfg.get('format')) or 'json').lower()

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> 'PortalSettings':
        """Load settings from a YAML file with environment substitution"""
        path = Path(path) if path else CONFIG_PATH

        if not path.exists():
            logger.warning(f"Settings file not found: {path}, using defaults")
            return cls({})

        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}

        return cls(_substitute_env_vars(raw))

    @property
    def notifications_configured(self) -> bool:
        """True when every EmailJS setting needed for sending is present"""
        return not self.missing_notification_settings()

    def missing_notification_settings(self) -> List[str]:
        """Names of the notification settings that are not configured"""
        missing = []
        if not self.emailjs_service_id:
            missing.append('Service ID is missing')
        if not self.emailjs_template_id_login:
            missing.append('Login template ID is missing')
        if not self.emailjs_template_id_update:
            missing.append('Update template ID is missing')
        if not self.emailjs_public_key:
            missing.append('Public key is missing')
        if not self.admin_email:
            missing.append('Admin email is missing')
        return missing

    def __repr__(self) -> str:
        return (
            f"PortalSettings(session_timeout_ms={self.session_timeout_ms}, "
            f"max_login_attempts={self.max_login_attempts}, "
            f"lockout_duration_ms={self.lockout_duration_ms}, "
            f"email_rate_limit={self.email_rate_limit}, "
            f"email_rate_limit_window_ms={self.email_rate_limit_window_ms})"
        )


def _substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in config

    Supports: ${VAR_NAME} or ${VAR_NAME:-default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        # Match ${VAR} or ${VAR:-default}
        pattern = r'\$\{([A-Z_]+)(?::-([^}]+))?\}'

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            return os.getenv(var_name, default or '')

        return re.sub(pattern, replacer, obj)
    else:
        return obj


# Settings cache
_settings: Optional[PortalSettings] = None


def get_settings() -> PortalSettings:
    """
    Get or create portal settings (cached)

    Returns:
        PortalSettings instance
    """
    global _settings
    if _settings is None:
        _settings = PortalSettings.from_file()
    return _settings


def reset_settings() -> None:
    """Clear the settings cache so the next call re-reads the environment"""
    global _settings
    _settings = None
