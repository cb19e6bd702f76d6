"""
Authentication API Routes

Login, logout, session status and lockout status for the portal client.
"""

import logging
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from portal.api.routes import get_portal
from portal.middleware.request_id_middleware import get_client_ip
from portal.services.exceptions import CredentialsNotConfiguredError
from portal.services.portal_service import PortalService
from portal.utils.error_handler import safe_error_response

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])

ACCOUNT_NUMBER_PATTERN = r'^\d{7,}$'
LOCAL_ADDRESSES = {"127.0.0.1", "::1", "localhost", "testclient", "unknown"}


# ==================== Pydantic Models ====================

class LoginRequest(BaseModel):
    account_number: str = Field(..., pattern=ACCOUNT_NUMBER_PATTERN)
    password: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    name: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    token: Optional[str] = None
    expires_at: Optional[int] = None
    user: Optional[dict] = None
    locked: bool = False
    remaining_seconds: int = 0
    remaining_attempts: Optional[int] = None
    error: Optional[str] = None


class LockoutStatusResponse(BaseModel):
    account_number: str
    is_locked: bool
    remaining_seconds: int
    remaining_attempts: int


# ==================== Auth Endpoints ====================

@auth_router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    login_data: LoginRequest,
    portal: PortalService = Depends(get_portal),
    user_agent: Optional[str] = Header(None, alias="User-Agent"),
):
    """
    Log in with account number and password.

    A locked account is refused without checking the password; the response
    carries the seconds left on the lock. Failed attempts report how many
    attempts remain before the account locks.
    """
    user_data = {"name": login_data.name, "email": login_data.email}
    user_data = {k: v for k, v in user_data.items() if v is not None}

    client_ip = get_client_ip(request)
    ip_address = None if client_ip in LOCAL_ADDRESSES else client_ip

    try:
        result = portal.login(
            account_number=login_data.account_number,
            password=login_data.password,
            user_data=user_data,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except CredentialsNotConfiguredError as e:
        raise safe_error_response(503, "verifying credentials", e, logger)

    if not result.success:
        return LoginResponse(
            success=False,
            locked=result.locked,
            remaining_seconds=result.remaining_seconds,
            remaining_attempts=result.remaining_attempts,
            error=result.error,
        )

    return LoginResponse(
        success=True,
        token=result.session.token,
        expires_at=result.session.expires_at,
        user=result.session.user,
    )


@auth_router.post("/logout")
def logout(portal: PortalService = Depends(get_portal)):
    """End the current session. Safe to call without a session."""
    portal.logout()
    return {"success": True, "message": "Logged out successfully"}


@auth_router.get("/session")
def get_session_status(portal: PortalService = Depends(get_portal)):
    """Whether a valid session exists, with its timestamps when it does"""
    session = portal.sessions.get_session()
    if session is None:
        return {"authenticated": False, "redirect": "/login"}

    return {
        "authenticated": True,
        "user": session.user,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "last_activity": session.last_activity,
    }


@auth_router.get("/lockout/{account_number}", response_model=LockoutStatusResponse)
def get_lockout_status(account_number: str, portal: PortalService = Depends(get_portal)):
    """Lock state and remaining attempts for an account"""
    status = portal.attempts.is_account_locked(account_number)
    return LockoutStatusResponse(
        account_number=account_number,
        is_locked=status.is_locked,
        remaining_seconds=status.remaining_seconds,
        remaining_attempts=portal.attempts.get_remaining_attempts(account_number),
    )
