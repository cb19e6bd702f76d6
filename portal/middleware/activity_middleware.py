"""
User Activity Middleware

Every request from the portal client counts as user interaction and
refreshes the session's last_activity, so the inactivity watchdog only
fires for clients that have really gone quiet.
"""

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# Health checks are not user activity
SKIP_PATHS = {"/health", "/health/ready"}


class ActivityMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        portal = getattr(request.app.state, "portal", None)
        if portal is not None and request.url.path not in SKIP_PATHS:
            # Store I/O is blocking; keep it off the event loop
            await run_in_threadpool(portal.sessions.record_activity)
        return await call_next(request)
