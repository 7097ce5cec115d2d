from typing import Any, Dict, Optional
from pydantic import BaseModel

from margin_tracker.schemas.base import CamelModel


class CurrentUser(BaseModel):
    """Identity carried by a verified Supabase access token."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None


class ProfileUpdate(CamelModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
