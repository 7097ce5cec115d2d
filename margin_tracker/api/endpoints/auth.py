"""
Auth Endpoints Module

Sign-in and registration are handled by Supabase. These endpoints only expose
the caller's identity and the editable part of their profile.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import utc_now_iso
from margin_tracker.db.session import get_db
from margin_tracker.models import UserProfile
from margin_tracker.schemas.user import CurrentUser, ProfileUpdate

router = APIRouter()


@router.get("/profile")
def read_profile(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Get the authenticated user and their stored profile.

    ``profile`` is null until the user saves it for the first time.
    """
    profile = db.get(UserProfile, current_user.id)
    return with_timestamp({
        "user": current_user.model_dump(),
        "profile": row(profile) if profile else None,
    })


@router.put("/profile")
def update_profile(
    profile_in: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Update the caller's profile, creating it on first save.
    """
    profile = db.get(UserProfile, current_user.id)
    if profile is None:
        profile = UserProfile(id=current_user.id, email=current_user.email or "")

    for key, value in profile_in.model_dump(exclude_unset=True).items():
        setattr(profile, key, value)
    profile.updated_at = utc_now_iso()

    db.add(profile)
    db.commit()
    db.refresh(profile)
    return with_timestamp({"profile": row(profile), "message": "Profile updated successfully"})
