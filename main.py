"""
Session Guard Portal - API Server
FastAPI application backing the banking portal's login and profile screens.

Features:
- Single-slot client session with absolute expiry and inactivity logout
- Per-account failed-login tracking with temporary lockout
- Throttled admin notifications for logins and profile updates (EmailJS)
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE other imports
load_dotenv()

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.loader import PortalSettings, get_settings
from portal.api.routes import include_routers, LOGIN_PATH
from portal.middleware.activity_middleware import ActivityMiddleware
from portal.middleware.request_id_middleware import RequestIdMiddleware
from portal.services.login_attempts import LoginAttemptTracker
from portal.services.notification_service import NotificationService
from portal.services.notification_throttle import NotificationThrottle
from portal.services.portal_service import CredentialVerifier, PortalService
from portal.services.session_manager import SessionManager
from portal.utils.storage import build_attempts_store, build_session_store, get_store_info
from portal.utils.structured_logger import setup_structured_logging, get_logger

logger = get_logger(__name__)


def build_portal(
    settings: PortalSettings,
    verify_credentials: Optional[CredentialVerifier] = None,
) -> PortalService:
    """Wire the session, attempt and notification services from settings"""

    def redirect_to_login():
        logger.info(f"Inactive session closed, client will be sent to {LOGIN_PATH}")

    sessions = SessionManager.from_settings(
        settings,
        store=build_session_store(settings),
        on_inactive=redirect_to_login,
    )
    attempts = LoginAttemptTracker.from_settings(settings, store=build_attempts_store(settings))
    throttle = NotificationThrottle.from_settings(settings)
    notifications = NotificationService(settings, throttle)

    return PortalService(
        sessions=sessions,
        attempts=attempts,
        notifications=notifications,
        verify_credentials=verify_credentials,
    )


def get_cors_origins() -> list:
    """Get allowed CORS origins from environment or use defaults."""
    env_origins = os.getenv("CORS_ORIGINS", "")
    if env_origins:
        return [origin.strip() for origin in env_origins.split(",") if origin.strip()]

    # Default origins for the local portal front end
    return [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


def create_app(
    settings: Optional[PortalSettings] = None,
    portal: Optional[PortalService] = None,
    verify_credentials: Optional[CredentialVerifier] = None,
) -> FastAPI:
    """
    Create the API application

    Args:
        settings: Portal settings (loaded from config/portal.yaml when omitted)
        portal: Pre-built PortalService (tests inject one with fakes)
        verify_credentials: Credential check used by login when portal is built here
    """
    settings = settings or get_settings()
    portal = portal or build_portal(settings, verify_credentials)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Session Guard Portal...")
        config_status = portal.notifications.validate_config()
        if not config_status["is_valid"]:
            logger.warning(f"Notifications disabled: {', '.join(config_status['errors'])}")
        yield
        logger.info("Shutting down...")
        portal.shutdown()

    app = FastAPI(
        title="Session Guard Portal",
        description="Session, lockout and notification handling for the banking portal",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.portal = portal
    app.state.settings = settings

    # NOTE: middleware runs in REVERSE order of addition.
    app.add_middleware(ActivityMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.get("/health")
    async def health_check():
        """Basic liveness check"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/health/ready")
    def readiness_check():
        """Reports notification configuration and storage backends; 503 if a store is down"""
        config_status = portal.notifications.validate_config()
        stores = {
            "session": get_store_info(portal.sessions.store),
            "login_attempts": get_store_info(portal.attempts.store),
        }
        ready = all(info["healthy"] for info in stores.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "ready" if ready else "not_ready",
                "notifications": {
                    "configured": config_status["is_valid"],
                    "errors": config_status["errors"],
                },
                "stores": stores,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    include_routers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"}
        )

    return app


settings = get_settings()
setup_structured_logging(level=settings.log_level, json_output=settings.log_format == "json")

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "127.0.0.1")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(app, host=host, port=port, log_level="info")
