"""
User Profile Model Module

Authentication itself lives in Supabase; this table only stores the profile data
the application shows and edits. ``id`` is the Supabase auth user id.
"""
from enum import Enum
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, Field, JSON, Column

from margin_tracker.core.dates import utc_now_iso


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserProfile(SQLModel, table=True):
    __tablename__ = "user_profiles"

    id: str = Field(primary_key=True)
    email: str = Field(nullable=False, index=True)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str = Field(default=UserRole.USER.value)
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    last_login_at: Optional[str] = None

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)
