"""
Router wiring and shared dependencies for the portal API.
"""

from fastapi import HTTPException, Request

from portal.services.portal_service import PortalService

LOGIN_PATH = "/login"


def get_portal(request: Request) -> PortalService:
    """PortalService attached to the running app"""
    portal = getattr(request.app.state, "portal", None)
    if portal is None:
        raise HTTPException(status_code=503, detail="Portal not initialised")
    return portal


def require_user(request: Request) -> dict:
    """Current session user, or 401 telling the client to go to the login page"""
    user = get_portal(request).sessions.get_current_user()
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "Session expired or not found", "redirect": LOGIN_PATH},
        )
    return user


def include_routers(app):
    """Include all routers in the FastAPI app"""
    from portal.api.auth_routes import auth_router
    from portal.api.profile_routes import profile_router

    app.include_router(auth_router)
    app.include_router(profile_router)
