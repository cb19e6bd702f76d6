"""
Profile API Routes

Read and update the profile fields held in the current session.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from portal.api.routes import get_portal, require_user, LOGIN_PATH
from portal.services.exceptions import NotAuthenticatedError
from portal.services.portal_service import PortalService

logger = logging.getLogger(__name__)

profile_router = APIRouter(prefix="/api/v1/profile", tags=["Profile"])


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=r'^[0-9]{10,15}$')
    address: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)


@profile_router.get("")
def get_profile(user: dict = Depends(require_user)):
    """Profile of the logged-in user"""
    return {"success": True, "data": user}


@profile_router.patch("")
def update_profile(
    update: ProfileUpdateRequest,
    portal: PortalService = Depends(get_portal),
):
    """
    Update profile fields.

    Only fields present in the request body and different from the stored
    value count as changes. The admin notification is sent in the background
    and never blocks or undoes the update.
    """
    updates = update.model_dump(exclude_unset=True)

    try:
        result = portal.update_profile(updates)
    except NotAuthenticatedError:
        raise HTTPException(
            status_code=401,
            detail={"error": "Session expired or not found", "redirect": LOGIN_PATH},
        )

    return {
        "success": True,
        "data": result.user,
        "changes": [
            {"field": c.field, "old_value": c.old_value, "new_value": c.new_value}
            for c in result.changes
        ],
    }
