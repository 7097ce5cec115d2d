"""
Integration Endpoints Module

ClickUp and Qonto synchronisation, connection status, and Qonto attachment
access. Sync runs are synchronous. Vision processing of newly imported
supplier invoices runs afterwards as a background task.
"""
import logging
from typing import Any, Dict, Optional

import requests
from fastapi import APIRouter, BackgroundTasks, Depends, Response
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import days_ago
from margin_tracker.core.errors import NotFound, UpstreamError, ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.integrations.clickup import ClickUpClient
from margin_tracker.integrations.qonto import QontoAPIError, QontoClient
from margin_tracker.integrations.vision import VisionAnalyzer
from margin_tracker.models import (
    ClickUpSyncLog, ClientInvoice, Project, QontoSyncLog, SupplierInvoice, SyncStatus,
)
from margin_tracker.schemas.integration import (
    ClickUpPushRequest, ClickUpSyncRequest, IntegrationActionRequest, QontoSyncRequest,
)
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.clickup_sync import FOLDER_SYNC_TYPE, ProjectSyncService, sync_project_folders
from margin_tracker.services.qonto_sync import qonto_data_statistics, run_qonto_sync
from margin_tracker.services.sync_runs import last_completed_at, recent_logs
from margin_tracker.services.vision_processing import process_new_supplier_invoices

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_clickup(client: Optional[ClickUpClient]) -> ClickUpClient:
    if client is None:
        raise ValidationError(error="ClickUp integration not configured")
    return client


def _require_qonto(client: Optional[QontoClient]) -> QontoClient:
    if client is None:
        raise ValidationError(error="Qonto integration not configured")
    return client


def run_clickup_sync(db: Session, client: ClickUpClient) -> Dict[str, Any]:
    run = sync_project_folders(db, client)
    return {"success": True, **run.summary(), "sync_type": FOLDER_SYNC_TYPE}


def run_qonto_sync_with_vision(
    db: Session,
    client: QontoClient,
    analyzer: Optional[VisionAnalyzer],
    background_tasks: BackgroundTasks,
    sync_type: str,
    force_full_sync: bool,
) -> Dict[str, Any]:
    outcome = run_qonto_sync(db, client, sync_type)
    new_invoices = outcome["new_supplier_invoices"]
    if new_invoices and analyzer is not None:
        logger.info("Queueing vision processing for %d new supplier invoice(s)", len(new_invoices))
        background_tasks.add_task(process_new_supplier_invoices, db.get_bind(), client, analyzer, new_invoices)
    return {
        "success": True,
        **outcome["run"].summary(),
        "sync_type": "full" if force_full_sync else "incremental",
        "api_type": sync_type,
        "queued_for_vision": len(new_invoices) if analyzer is not None else 0,
    }


@router.post("/clickup/sync")
def sync_clickup(
    request: Optional[ClickUpSyncRequest] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    clickup: Optional[ClickUpClient] = Depends(deps.get_clickup_client),
) -> Dict[str, Any]:
    """
    Mirror the ClickUp space folders as projects.

    Every folder is fetched, so ``force_full_sync`` makes no difference here.

    Raises:
        ValidationError: If ClickUp is not configured
        ConflictError: If a folder sync is already running
        SyncFailed: If the folder listing failed
    """
    return with_timestamp(run_clickup_sync(db, _require_clickup(clickup)))


@router.get("/clickup/sync")
def read_clickup_sync(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """Last ten ClickUp sync runs and the time of the last successful one."""
    logs = recent_logs(db, ClickUpSyncLog)
    return with_timestamp({
        "last_sync": last_completed_at(logs),
        "sync_logs": [row(log) for log in logs],
        "status": "available",
    })


@router.post("/clickup/push")
def push_to_clickup(
    request: ClickUpPushRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    clickup: Optional[ClickUpClient] = Depends(deps.get_clickup_client),
) -> Dict[str, Any]:
    """
    Push project financial summaries to ClickUp tasks.

    ``sync_project`` pushes one project (``project_id`` required),
    ``sync_all`` pushes every project that is not archived.
    """
    service = ProjectSyncService(_require_clickup(clickup), db)
    if request.action == "sync_all":
        return with_timestamp(service.sync_all())

    if not request.project_id:
        raise ValidationError(error="project_id is required for sync_project")
    project = db.get(Project, request.project_id)
    if not project:
        raise NotFound(error="Project not found")
    return with_timestamp(service.sync_project(project))


@router.post("/qonto/sync")
def sync_qonto(
    background_tasks: BackgroundTasks,
    request: Optional[QontoSyncRequest] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
    analyzer: Optional[VisionAnalyzer] = Depends(deps.get_vision_analyzer),
) -> Dict[str, Any]:
    """
    Import clients, client invoices and supplier invoices from Qonto.

    New supplier invoices with a PDF are analyzed in the background when vision
    is configured.

    Raises:
        ValidationError: If Qonto is not configured
        ConflictError: If a sync of the same type is already running
        SyncFailed: If the run aborted
    """
    request = request or QontoSyncRequest()
    return with_timestamp(run_qonto_sync_with_vision(
        db, _require_qonto(qonto), analyzer, background_tasks,
        request.sync_type, request.force_full_sync,
    ))


@router.get("/qonto/sync")
def read_qonto_sync(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """Last ten Qonto sync runs and how many rows came from Qonto."""
    logs = recent_logs(db, QontoSyncLog)
    return with_timestamp({
        "last_sync": last_completed_at(logs),
        "sync_logs": [row(log) for log in logs],
        "status": "available",
        "statistics": qonto_data_statistics(db),
    })


@router.get("/qonto/attachments/{attachment_id}")
def read_qonto_attachment(
    attachment_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
) -> Dict[str, Any]:
    """
    Temporary download URL of a Qonto attachment.

    Raises:
        NotFound: If Qonto does not know the attachment
    """
    client = _require_qonto(qonto)
    try:
        attachment = client.get_attachment_url(attachment_id)
    except QontoAPIError as exc:
        if exc.upstream_status == 404:
            raise NotFound(error="Attachment not found") from exc
        raise
    return with_timestamp({"attachment_id": attachment_id, **attachment})


@router.get("/qonto/attachments/{attachment_id}/pdf")
def read_qonto_attachment_pdf(
    attachment_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
) -> Response:
    """
    Stream a Qonto attachment back as an inline PDF for the invoice viewer.

    Raises:
        NotFound: If Qonto does not know the attachment or has no URL for it
        UpstreamError: If the PDF download failed
    """
    client = _require_qonto(qonto)
    try:
        url = client.get_attachment_url(attachment_id)["url"]
    except QontoAPIError as exc:
        if exc.upstream_status == 404:
            raise NotFound(error="Attachment not found") from exc
        raise
    if not url:
        raise NotFound(error="PDF URL not available")

    try:
        content = client.download(url)
    except (QontoAPIError, requests.RequestException) as exc:
        logger.error("Failed to fetch attachment %s from Qonto: %s", attachment_id, exc)
        raise UpstreamError(str(exc), error="Failed to fetch PDF from Qonto") from exc

    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": "inline",
            "Cache-Control": "private, max-age=3600",
            "X-Content-Type-Options": "nosniff",
        },
    )


def _sync_stats(db: Session, log_model) -> Dict[str, int]:
    """Runs of the last 30 days, counted by status."""
    since = days_ago(30).isoformat()
    statuses = db.exec(select(log_model.sync_status).where(log_model.started_at >= since)).all()
    return {status.value: statuses.count(status.value) for status in SyncStatus}


def _last_completed(db: Session, log_model) -> Optional[str]:
    return db.exec(
        select(log_model.completed_at)
        .where(log_model.sync_status == SyncStatus.COMPLETED.value)
        .order_by(log_model.completed_at.desc())
    ).first()


@router.get("/status")
def read_integration_status(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    clickup: Optional[ClickUpClient] = Depends(deps.get_clickup_client),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
) -> Dict[str, Any]:
    """
    Connection status of every integration, recent sync activity and row counts.

    An integration is "unavailable" when it is not configured, "error" when the
    connection test fails and "connected" otherwise.
    """
    clickup_status = {"status": "unavailable", "last_sync": None, "error": None}
    if clickup is not None:
        test = clickup.test_connection()
        if test["success"]:
            clickup_status.update(status="connected", last_sync=_last_completed(db, ClickUpSyncLog))
        else:
            clickup_status.update(status="error", error=test.get("error") or "Connection failed")
    clickup_status["sync_stats"] = _sync_stats(db, ClickUpSyncLog)

    qonto_status = {"status": "unavailable", "last_sync": None, "error": None, "organization": None}
    if qonto is not None:
        test = qonto.test_connection()
        if test["success"]:
            qonto_status.update(
                status="connected",
                last_sync=_last_completed(db, QontoSyncLog),
                organization=test.get("organization"),
            )
        else:
            qonto_status.update(status="error", error=test.get("error") or "Connection failed")
    qonto_status["sync_stats"] = _sync_stats(db, QontoSyncLog)

    return with_timestamp({
        "integrations": {"clickup": clickup_status, "qonto": qonto_status},
        "data_statistics": {
            "projects": len(db.exec(select(Project.id)).all()),
            "supplier_invoices": len(db.exec(select(SupplierInvoice.id)).all()),
            "client_invoices": len(db.exec(select(ClientInvoice.id)).all()),
        },
        "system_status": "operational",
    })


@router.post("/status")
def run_integration_action(
    request: IntegrationActionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    clickup: Optional[ClickUpClient] = Depends(deps.get_clickup_client),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
    analyzer: Optional[VisionAnalyzer] = Depends(deps.get_vision_analyzer),
) -> Dict[str, Any]:
    """
    Trigger a sync or a connection test from the settings page.
    """
    if request.action == "test_connection":
        client = clickup if request.integration == "clickup" else qonto
        result = client.test_connection() if client else {"success": False, "error": "Client not available"}
        return with_timestamp({"integration": request.integration, "action": request.action, **result})

    if request.integration == "clickup":
        result = run_clickup_sync(db, _require_clickup(clickup))
    else:
        result = run_qonto_sync_with_vision(
            db, _require_qonto(qonto), analyzer, background_tasks, "all", False
        )
    return with_timestamp({
        "integration": request.integration,
        "action": request.action,
        "success": True,
        "result": result,
    })
