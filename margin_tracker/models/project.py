"""
Project Model Module

Projects are the unit margins are tracked against. They are created manually or
mirrored from ClickUp folders, and are archived rather than deleted.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field
import uuid

from margin_tracker.core.dates import utc_now_iso


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ON_HOLD = "on-hold"
    ARCHIVED = "archived"


class Project(SQLModel, table=True):
    """
    Project tracked for revenue, cost and margin.

    Attributes:
        id: UUID primary key
        name: Project name (required)
        description: Free-form description
        client_name: Display name of the primary client, used to auto-link Qonto invoices
        status: One of "active", "completed", "on-hold", "archived"
        currency: ISO currency code used for the project's figures (default: "EUR")
        start_date: Start date in ISO format (YYYY-MM-DD)
        end_date: End date in ISO format (YYYY-MM-DD)
        clickup_id: ClickUp task id when the project was pushed to ClickUp
        clickup_folder_id: ClickUp folder id when the project was pulled from ClickUp
        last_sync_at: ISO timestamp of the last ClickUp sync touching this row
        sync_status: Result of the last sync ("success", "error", ...)
    """
    __tablename__ = "projects"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    name: str = Field(nullable=False)
    description: Optional[str] = None
    client_name: Optional[str] = Field(default=None, index=True)

    status: str = Field(default=ProjectStatus.ACTIVE.value)
    currency: str = "EUR"

    start_date: Optional[str] = None
    end_date: Optional[str] = None

    # ClickUp linkage
    clickup_id: Optional[str] = None
    clickup_folder_id: Optional[str] = Field(default=None, index=True)
    last_sync_at: Optional[str] = None
    sync_status: Optional[str] = None

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)
