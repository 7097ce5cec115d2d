"""
Sync run bookkeeping.

A :class:`SyncRun` owns one row of ``clickup_sync_log`` or ``qonto_sync_log``.
The row is committed as soon as the run starts and moves once to
``completed`` or ``failed``. Rows written by the sync itself are committed
independently, so a failure does not roll back work already done.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Type, Union

from sqlmodel import Session, select

from margin_tracker.core.config import settings
from margin_tracker.core.dates import parse_datetime, utc_now, utc_now_iso
from margin_tracker.core.errors import ConflictError, UpstreamError
from margin_tracker.models import ClickUpSyncLog, QontoSyncLog, SyncStatus

logger = logging.getLogger(__name__)

SyncLogModel = Type[Union[ClickUpSyncLog, QontoSyncLog]]


class SyncFailed(UpstreamError):
    """A sync run aborted. Carries ``details`` and ``records_processed``."""
    error = "Sync failed"


class SyncRun:
    """
    Lifecycle of one sync run.

    Usage::

        run = SyncRun(db, ClickUpSyncLog, "project_folders").start()
        try:
            ... run.processed += 1 ...
        except Exception as exc:
            run.fail(str(exc))
            raise
        run.complete()
    """

    def __init__(self, db: Session, log_model: SyncLogModel, sync_type: str):
        self.db = db
        self.log_model = log_model
        self.sync_type = sync_type
        self.log: Optional[Union[ClickUpSyncLog, QontoSyncLog]] = None
        self.processed = 0
        self.created = 0
        self.updated = 0

    def _running_log(self):
        """A started run of the same type that is recent enough to still be alive."""
        cutoff = utc_now() - timedelta(minutes=settings.SYNC_LOCK_TIMEOUT_MINUTES)
        statement = select(self.log_model).where(
            self.log_model.sync_type == self.sync_type,
            self.log_model.sync_status == SyncStatus.STARTED.value,
        )
        for log in self.db.exec(statement).all():
            started_at = parse_datetime(log.started_at)
            if started_at and started_at >= cutoff:
                return log
        return None

    def start(self) -> "SyncRun":
        """
        Insert the "started" row.

        Raises:
            ConflictError: if a run of the same type is already in progress
        """
        running = self._running_log()
        if running is not None:
            raise ConflictError(
                f"A {self.sync_type} sync started at {running.started_at} is still running",
                error="Sync already in progress",
            )
        self.log = self.log_model(sync_type=self.sync_type, sync_status=SyncStatus.STARTED.value)
        self.db.add(self.log)
        self.db.commit()
        self.db.refresh(self.log)
        logger.info("%s sync %s started (%s)", self.log_model.__tablename__, self.log.id, self.sync_type)
        return self

    def _finish(self, status: SyncStatus, error_message: Optional[str] = None) -> None:
        self.log.sync_status = status.value
        self.log.records_processed = self.processed
        self.log.records_created = self.created
        self.log.records_updated = self.updated
        self.log.completed_at = utc_now_iso()
        self.log.error_message = error_message
        self.db.add(self.log)
        self.db.commit()
        self.db.refresh(self.log)

    def complete(self) -> None:
        self._finish(SyncStatus.COMPLETED)
        logger.info(
            "Sync %s completed: %d processed, %d created, %d updated",
            self.log.id, self.processed, self.created, self.updated,
        )

    def fail(self, error_message: str) -> None:
        # Discard anything half-written by the failing item before logging
        self.db.rollback()
        self._finish(SyncStatus.FAILED, error_message)
        logger.error("Sync %s failed after %d records: %s", self.log.id, self.processed, error_message)

    def summary(self) -> Dict[str, Any]:
        return {
            "sync_id": self.log.id if self.log else None,
            "records_processed": self.processed,
            "records_created": self.created,
            "records_updated": self.updated,
        }


def recent_logs(db: Session, log_model: SyncLogModel, limit: int = 10) -> List[Any]:
    statement = select(log_model).order_by(log_model.started_at.desc()).limit(limit)
    return list(db.exec(statement).all())


def last_completed_at(logs: List[Any]) -> Optional[str]:
    for log in logs:
        if log.sync_status == SyncStatus.COMPLETED.value:
            return log.completed_at
    return None
