"""
Sync Log Models Module

One row per sync run. A run starts as "started" and ends as "completed" or
"failed"; rows are never moved out of a terminal state.
"""
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field
import uuid

from margin_tracker.core.dates import utc_now_iso


class SyncStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncLogBase(SQLModel):
    sync_type: str = Field(nullable=False, index=True)
    sync_status: str = Field(default=SyncStatus.STARTED.value)
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    started_at: Optional[str] = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    error_message: Optional[str] = None


class ClickUpSyncLog(SyncLogBase, table=True):
    __tablename__ = "clickup_sync_log"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)


class QontoSyncLog(SyncLogBase, table=True):
    __tablename__ = "qonto_sync_log"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    last_transaction_id: Optional[str] = None
