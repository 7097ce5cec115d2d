"""
Vision processing of supplier invoices.

Runs the vision analyzer over an invoice PDF, stores the outcome in
``ai_processing_results`` and moves the invoice through the confidence
statuses. After a Qonto sync, confident matches are assigned automatically.
"""
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from margin_tracker.core.dates import utc_now_iso
from margin_tracker.core.errors import UpstreamError
from margin_tracker.integrations.qonto import QontoClient
from margin_tracker.integrations.vision import (
    VisionAnalyzer, best_match, calculate_overall_confidence,
)
from margin_tracker.models import (
    AIProcessingResult, AssignmentType, InvoiceProjectAssignment, Project, SupplierInvoice,
)

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 80
MEDIUM_CONFIDENCE = 60
AUTO_ASSIGNER = "Claude Vision AI"


def confidence_status(confidence: float) -> str:
    if confidence >= HIGH_CONFIDENCE:
        return "high-confidence"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium-confidence"
    return "low-confidence"


def latest_result(db: Session, invoice_id: str, status: Optional[str] = None) -> Optional[AIProcessingResult]:
    statement = select(AIProcessingResult).where(AIProcessingResult.supplier_invoice_id == invoice_id)
    if status:
        statement = statement.where(AIProcessingResult.processing_status == status)
    return db.exec(statement.order_by(AIProcessingResult.processed_at.desc())).first()


def store_failure(db: Session, invoice_id: str, error_message: str,
                  processing_time_ms: int = 0) -> AIProcessingResult:
    result = AIProcessingResult(
        supplier_invoice_id=invoice_id,
        processing_status="failed",
        confidence_score=0,
        project_matches=[],
        processing_time_ms=processing_time_ms,
        error_message=error_message,
    )
    db.add(result)
    db.commit()
    db.refresh(result)
    return result


def process_supplier_invoice(
    db: Session,
    analyzer: VisionAnalyzer,
    invoice: SupplierInvoice,
    pdf_url: Optional[str] = None,
    pdf_bytes: Optional[bytes] = None,
    skip_status_update: bool = False,
) -> AIProcessingResult:
    """
    Analyze one supplier invoice and persist the result.

    Analyzer failures are stored as a "failed" result rather than raised.

    Args:
        db: Database session
        analyzer: Vision analyzer
        invoice: Invoice being analyzed
        pdf_url: Public or pre-signed PDF URL, preferred when given
        pdf_bytes: PDF content, used when no URL is given
        skip_status_update: Leave the invoice status alone (the caller decides)

    Returns:
        AIProcessingResult: the stored row
    """
    started = time.monotonic()
    projects = db.exec(select(Project).where(Project.status.in_(("active", "archived")))).all()
    try:
        analysis = analyzer.analyze(projects, pdf_url=pdf_url, pdf_bytes=pdf_bytes)
    except Exception as exc:
        elapsed = int((time.monotonic() - started) * 1000)
        logger.error("Vision processing of supplier invoice %s failed: %s", invoice.id, exc)
        return store_failure(db, invoice.id, str(exc), elapsed)

    elapsed = int((time.monotonic() - started) * 1000)
    result = AIProcessingResult(
        supplier_invoice_id=invoice.id,
        processing_status="completed",
        confidence_score=calculate_overall_confidence(analysis),
        project_matches=analysis["projectMatches"],
        extracted_text=analysis.get("extractedText"),
        processing_time_ms=elapsed,
    )
    db.add(result)

    top = best_match(analysis["projectMatches"])
    if not skip_status_update and top is not None:
        invoice.status = confidence_status(top["confidence"])
        invoice.is_processed = True
        invoice.processing_date = utc_now_iso()
        invoice.updated_at = utc_now_iso()
        db.add(invoice)
    db.commit()
    db.refresh(result)
    logger.info(
        "Vision processed supplier invoice %s in %d ms (confidence %s, %d match(es))",
        invoice.id, elapsed, result.confidence_score, len(result.project_matches),
    )
    return result


def auto_assign(db: Session, invoice: SupplierInvoice, result: AIProcessingResult) -> str:
    """
    Act on a vision result: assign the whole invoice to a confident match,
    otherwise record how confident the best guess was.

    Returns:
        str: the invoice's new status
    """
    top = best_match(result.project_matches or [])
    if top is None:
        invoice.status = "no-match"
    elif top["confidence"] >= HIGH_CONFIDENCE and db.get(Project, top.get("projectId")) is not None:
        db.add(InvoiceProjectAssignment(
            supplier_invoice_id=invoice.id,
            project_id=top["projectId"],
            amount_assigned=invoice.amount_total,
            percentage=100,
            assignment_type=AssignmentType.AI_AUTO_ASSIGNED.value,
            assigned_by=AUTO_ASSIGNER,
        ))
        invoice.status = "assigned"
        logger.info("Auto-assigned supplier invoice %s to project %s (%s%%)",
                    invoice.id, top["projectId"], top["confidence"])
    else:
        invoice.status = "medium-confidence" if top["confidence"] >= MEDIUM_CONFIDENCE else "low-confidence"
    invoice.is_processed = True
    invoice.processing_date = utc_now_iso()
    invoice.updated_at = utc_now_iso()
    db.add(invoice)
    db.commit()
    return invoice.status


def attachment_pdf_url(qonto: QontoClient, attachment_id: str) -> str:
    """Temporary URL of an invoice PDF, which the analyzer fetches itself."""
    url = qonto.get_attachment_url(attachment_id)["url"]
    if not url:
        raise UpstreamError(f"PDF URL not available for attachment {attachment_id}")
    return url


def process_new_supplier_invoices(engine: Engine, qonto: QontoClient, analyzer: VisionAnalyzer,
                                  invoice_ids: list) -> Dict[str, Any]:
    """
    Background job run after a Qonto sync.

    Each invoice PDF is analyzed from its Qonto URL, then auto-assigned. Calls
    are spaced by the analyzer's rate limiter. Failures are stored per invoice.
    """
    outcome = {"processed": 0, "assigned": 0, "failed": 0}
    with Session(engine) as db:
        for invoice_id in invoice_ids:
            invoice = db.get(SupplierInvoice, invoice_id)
            if invoice is None or not invoice.attachment_id:
                continue
            try:
                pdf_url = attachment_pdf_url(qonto, invoice.attachment_id)
            except Exception as exc:
                db.rollback()
                logger.error("Could not fetch attachment of supplier invoice %s: %s", invoice_id, exc)
                store_failure(db, invoice_id, str(exc))
                outcome["failed"] += 1
                continue

            result = process_supplier_invoice(
                db, analyzer, invoice, pdf_url=pdf_url, skip_status_update=True
            )
            outcome["processed"] += 1
            if result.processing_status == "failed":
                outcome["failed"] += 1
                continue
            if auto_assign(db, invoice, result) == "assigned":
                outcome["assigned"] += 1
    logger.info("Background vision run finished: %s", outcome)
    return outcome
