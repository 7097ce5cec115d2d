from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import with_timestamp
from margin_tracker.core.dates import parse_datetime, utc_now
from margin_tracker.core.errors import ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.models import (
    ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project, SupplierInvoice,
)
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.reports import build_report

router = APIRouter()


@router.get("")
def read_reports(
    months: int = Query(default=6, ge=1, le=36),
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Monthly revenue, costs and margin, project performance and alerts.

    Args:
        months: Number of months reported, ending with the month of ``endDate``
        startDate: Start of the reported range (informational)
        endDate: Reference date, today when omitted
        db: Database session
        current_user: Currently authenticated user
    """
    end = parse_datetime(endDate) if endDate else utc_now()
    start = parse_datetime(startDate) if startDate else None
    if end is None or (startDate and start is None):
        raise ValidationError("Dates must be in ISO format (YYYY-MM-DD)", error="Invalid date range")
    if start is not None and start > end:
        raise ValidationError(error="Invalid date range")

    projects = db.exec(select(Project)).all()
    invoices = db.exec(select(ClientInvoice).where(ClientInvoice.project_id.is_not(None))).all()
    expenses = db.exec(select(ManualExpense).where(ManualExpense.project_id.is_not(None))).all()
    assignments = db.exec(select(InvoiceProjectAssignment)).all()
    supplier_ids = list({a.supplier_invoice_id for a in assignments})
    supplier_invoices = {
        s.id: s for s in db.exec(select(SupplierInvoice).where(SupplierInvoice.id.in_(supplier_ids))).all()
    } if supplier_ids else {}

    report = build_report(
        projects, invoices, expenses, assignments, supplier_invoices,
        end=end, months=months, start=start,
    )
    return with_timestamp(report)
