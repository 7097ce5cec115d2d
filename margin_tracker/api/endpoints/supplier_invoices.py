"""
Supplier Invoice Endpoints Module

Supplier invoices are the cost side of a project's margin. This module exposes
listing with AI and assignment details, manual entry, partial updates that
replace project assignments, deletion, and on-demand vision processing.
"""
import logging
from typing import Any, Dict, Optional

import requests
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import utc_now_iso
from margin_tracker.core.errors import NotFound, UpstreamError, ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.integrations.qonto import QontoClient
from margin_tracker.integrations.vision import VisionAnalyzer
from margin_tracker.models import (
    InvoiceProjectAssignment, Project, SupplierInvoice, UNASSIGNED_STATUSES,
)
from margin_tracker.schemas.supplier_invoice import SupplierInvoiceCreate, SupplierInvoiceUpdate
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.assignments import delete_supplier_invoice, list_assignments, replace_assignments
from margin_tracker.services.financials import HIGH_CONFIDENCE_THRESHOLD, group_by, supplier_invoice_statistics
from margin_tracker.services.queries import latest_results_by_invoice
from margin_tracker.services.vision_processing import (
    attachment_pdf_url, latest_result, process_supplier_invoice, store_failure,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _ai_extraction(result) -> Dict[str, Any]:
    return {
        "confidence": result.confidence_score or 0,
        "projectMatches": result.project_matches or [],
        "extractedText": result.extracted_text,
        "processingStatus": result.processing_status,
    }


def _assignment_rows(assignments, project_names: Dict[str, str]) -> list:
    return [
        {
            "id": a.id,
            "projectId": a.project_id,
            "projectName": project_names.get(a.project_id, "Unknown Project"),
            "amountAssigned": a.amount_assigned,
            "percentage": a.percentage,
            "assignmentType": a.assignment_type,
            "assignedBy": a.assigned_by,
            "assignedAt": a.assigned_at,
        }
        for a in assignments
    ]


def _project_names(db: Session) -> Dict[str, str]:
    return {p.id: p.name for p in db.exec(select(Project)).all()}


def get_invoice_or_404(db: Session, invoice_id: str) -> SupplierInvoice:
    invoice = db.get(SupplierInvoice, invoice_id)
    if not invoice:
        raise NotFound(error="Supplier invoice not found")
    return invoice


@router.get("")
def list_supplier_invoices(
    status: Optional[str] = None,
    unassignedOnly: bool = False,
    highConfidenceOnly: bool = False,
    includeAI: bool = False,
    includeAssignments: bool = False,
    includeStatistics: bool = False,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Retrieve supplier invoices, newest first.

    Args:
        status: Keep only invoices with this status
        unassignedOnly: Keep only invoices still waiting for an assignment
        highConfidenceOnly: Keep only invoices whose latest AI confidence is at least 80
        includeAI: Attach the latest vision result as ``aiExtraction``
        includeAssignments: Attach the project assignments as ``assignments``
        includeStatistics: Add listing statistics
        db: Database session
        current_user: Currently authenticated user
    """
    statement = select(SupplierInvoice).order_by(SupplierInvoice.invoice_date.desc())
    if status:
        statement = statement.where(SupplierInvoice.status == status)
    if unassignedOnly:
        statement = statement.where(SupplierInvoice.status.in_(UNASSIGNED_STATUSES))
    invoices = list(db.exec(statement).all())

    latest = latest_results_by_invoice(db, [i.id for i in invoices]) if (
        includeAI or highConfidenceOnly or includeStatistics
    ) else {}
    if highConfidenceOnly:
        invoices = [
            i for i in invoices
            if i.id in latest and (latest[i.id].confidence_score or 0) >= HIGH_CONFIDENCE_THRESHOLD
        ]

    assignments: Dict[str, list] = {}
    project_names: Dict[str, str] = {}
    if includeAssignments and invoices:
        assignments = group_by(db.exec(select(InvoiceProjectAssignment).where(
            InvoiceProjectAssignment.supplier_invoice_id.in_([i.id for i in invoices])
        )).all(), "supplier_invoice_id")
        project_names = _project_names(db)

    rows = []
    for invoice in invoices:
        extra: Dict[str, Any] = {}
        if includeAI and invoice.id in latest:
            extra["aiExtraction"] = _ai_extraction(latest[invoice.id])
        if includeAssignments:
            extra["assignments"] = _assignment_rows(assignments.get(invoice.id, []), project_names)
        rows.append(row(invoice, **extra))

    payload: Dict[str, Any] = {
        "supplierInvoices": rows,
        "total": len(rows),
        "filters": {
            "status": status,
            "unassignedOnly": unassignedOnly,
            "highConfidenceOnly": highConfidenceOnly,
            "includeAI": includeAI,
            "includeAssignments": includeAssignments,
        },
    }
    if includeStatistics:
        payload["statistics"] = supplier_invoice_statistics(invoices, latest)
    return with_timestamp(payload)


@router.post("")
def create_supplier_invoice(
    invoice_in: SupplierInvoiceCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Enter a supplier invoice by hand, optionally with its project assignments.

    Raises:
        ValidationError: Invalid assignments (unknown project, total above the invoice amount)
    """
    invoice = SupplierInvoice(**invoice_in.model_dump(mode="json", exclude={"project_assignments"}))
    db.add(invoice)
    db.flush()
    if invoice_in.project_assignments:
        try:
            replace_assignments(db, invoice, invoice_in.project_assignments, current_user.email)
        except ValidationError:
            db.rollback()
            raise
    db.commit()
    db.refresh(invoice)
    logger.info("Created supplier invoice %s (%s)", invoice.id, invoice.supplier_name)
    return with_timestamp({
        "success": True,
        "supplierInvoice": row(invoice),
        "message": "Supplier invoice created successfully",
    })


def _apply_update(db: Session, invoice: SupplierInvoice, update: SupplierInvoiceUpdate,
                  current_user: CurrentUser) -> SupplierInvoice:
    fields = update.model_dump(mode="json", exclude_unset=True, exclude={"id", "project_assignments"})
    for key, value in fields.items():
        setattr(invoice, key, value)
    invoice.updated_at = utc_now_iso()
    db.add(invoice)
    if update.project_assignments is not None:
        # Old rows are deleted and new ones inserted in this same commit
        try:
            replace_assignments(db, invoice, update.project_assignments, current_user.email)
        except ValidationError:
            db.rollback()
            raise
    db.commit()
    db.refresh(invoice)
    return invoice


@router.put("")
def update_supplier_invoice_from_body(
    update: SupplierInvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Partial update with the invoice id in the body.

    Raises:
        ValidationError: If the body carries no id
        NotFound: If the invoice doesn't exist
    """
    if not update.id:
        raise ValidationError(error="Supplier invoice ID is required for updates")
    invoice = _apply_update(db, get_invoice_or_404(db, update.id), update, current_user)
    return with_timestamp({
        "success": True,
        "supplierInvoice": row(invoice),
        "message": "Supplier invoice updated successfully",
    })


@router.get("/{invoice_id}")
def read_supplier_invoice(
    invoice_id: str,
    includeAI: bool = True,
    includeAssignments: bool = True,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    invoice = get_invoice_or_404(db, invoice_id)
    extra: Dict[str, Any] = {}
    if includeAI:
        result = latest_result(db, invoice.id)
        if result is not None:
            extra["aiExtraction"] = _ai_extraction(result)
    if includeAssignments:
        extra["assignments"] = _assignment_rows(list_assignments(db, invoice.id), _project_names(db))
    return with_timestamp({"invoice": row(invoice, **extra)})


@router.put("/{invoice_id}")
def update_supplier_invoice(
    invoice_id: str,
    update: SupplierInvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Partial update. ``projectAssignments``, when sent, replaces every assignment.
    """
    invoice = _apply_update(db, get_invoice_or_404(db, invoice_id), update, current_user)
    return with_timestamp({
        "success": True,
        "invoice": row(invoice),
        "message": "Invoice updated successfully",
    })


@router.delete("/{invoice_id}")
def remove_supplier_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Delete a supplier invoice together with its assignments and AI results.
    """
    delete_supplier_invoice(db, invoice_id)
    return with_timestamp({"success": True, "message": "Invoice deleted successfully"})


@router.post("/{invoice_id}/process-ocr")
def run_vision_processing(
    invoice_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
    qonto: Optional[QontoClient] = Depends(deps.get_qonto_client),
    analyzer: Optional[VisionAnalyzer] = Depends(deps.get_vision_analyzer),
) -> Dict[str, Any]:
    """
    Run vision project matching on the invoice PDF now.

    An invoice that already has a completed result is not processed again.

    Raises:
        NotFound: If the invoice doesn't exist
        ValidationError: If the invoice has no PDF attachment
        UpstreamError: If the PDF could not be fetched or the analysis failed
    """
    invoice = get_invoice_or_404(db, invoice_id)
    if not invoice.attachment_id:
        raise ValidationError(error="No PDF attachment found for this invoice")

    existing = latest_result(db, invoice.id, status="completed")
    if existing is not None:
        return with_timestamp({
            "message": "AI Vision analysis already completed for this invoice",
            "existing_result": {
                "confidence": existing.confidence_score,
                "project_matches": existing.project_matches,
                "processing_type": existing.processing_type,
            },
        })

    logger.info("Vision processing requested for supplier invoice %s (%s)", invoice.id, invoice.supplier_name)
    try:
        if qonto is None:
            raise UpstreamError("Qonto integration not available")
        if analyzer is None:
            raise UpstreamError("Vision analysis not configured")
        pdf_url = attachment_pdf_url(qonto, invoice.attachment_id)
    except (UpstreamError, requests.RequestException) as exc:
        store_failure(db, invoice.id, str(exc))
        raise UpstreamError(error="AI Vision processing failed", details=str(exc)) from exc

    result = process_supplier_invoice(db, analyzer, invoice, pdf_url=pdf_url)
    if result.processing_status == "failed":
        raise UpstreamError(error="AI Vision processing failed", details=result.error_message)

    db.refresh(invoice)
    return with_timestamp({
        "success": True,
        "message": "AI Vision processing completed",
        "result": {
            "confidence": result.confidence_score,
            "project_matches": result.project_matches,
            "extracted_text_length": len(result.extracted_text or ""),
            "processing_time_ms": result.processing_time_ms,
            "status": invoice.status,
        },
    })


@router.get("/{invoice_id}/process-ocr")
def read_vision_processing(
    invoice_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Latest vision result of an invoice, with a short preview of the extracted text.
    """
    result = latest_result(db, invoice_id)
    if result is None:
        return with_timestamp({
            "message": "No AI Vision processing found for this invoice",
            "has_processing": False,
        })
    text = result.extracted_text or ""
    return with_timestamp({
        "has_processing": True,
        "result": {
            "id": result.id,
            "confidence": result.confidence_score,
            "project_matches": result.project_matches,
            "processing_status": result.processing_status,
            "processing_time_ms": result.processing_time_ms,
            "processed_at": result.processed_at,
            "error_message": result.error_message,
            "extracted_text_preview": text[:200] + ("..." if len(text) > 200 else ""),
        },
    })
