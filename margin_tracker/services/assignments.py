"""
Supplier invoice to project assignments.

Assignment lists are replaced wholesale. The delete of the previous rows and the
insert of the new ones happen inside the caller's session and are committed
together, so a failed insert leaves the previous assignments in place.
"""
import logging
from typing import Iterable, List, Optional

from sqlmodel import Session, select

from margin_tracker.core.errors import NotFound, ValidationError
from margin_tracker.models import (
    AIProcessingResult, AssignmentType, InvoiceProjectAssignment, Project, SupplierInvoice,
)
from margin_tracker.schemas.supplier_invoice import AssignmentIn

logger = logging.getLogger(__name__)

# Rounding slack when comparing assigned totals with the invoice total
AMOUNT_TOLERANCE = 0.01


def build_assignments(
    db: Session,
    invoice: SupplierInvoice,
    items: Iterable[AssignmentIn],
    assigned_by: Optional[str],
) -> List[InvoiceProjectAssignment]:
    """
    Validate assignment input against an invoice and build the rows.

    Raises:
        ValidationError: unknown project, negative amount, or a total above the invoice amount
    """
    rows = []
    total_assigned = 0.0
    for item in items:
        if db.get(Project, item.project_id) is None:
            raise ValidationError(f"Project {item.project_id} does not exist", error="Invalid project assignment")
        amount = item.amount_assigned or 0.0
        if amount < 0:
            raise ValidationError("Assigned amounts must be positive", error="Invalid project assignment")
        total_assigned += amount

        percentage = item.percentage
        if percentage is None and invoice.amount_total:
            percentage = round(amount / invoice.amount_total * 100, 2)

        rows.append(InvoiceProjectAssignment(
            supplier_invoice_id=invoice.id,
            project_id=item.project_id,
            amount_assigned=amount,
            percentage=percentage,
            assignment_type=item.assignment_type or AssignmentType.MANUAL.value,
            assigned_by=assigned_by,
        ))

    if total_assigned > (invoice.amount_total or 0) + AMOUNT_TOLERANCE:
        raise ValidationError(
            f"Assigned total {total_assigned:.2f} exceeds invoice total {invoice.amount_total:.2f}",
            error="Assignments exceed invoice amount",
        )
    return rows


def replace_assignments(
    db: Session,
    invoice: SupplierInvoice,
    items: Iterable[AssignmentIn],
    assigned_by: Optional[str],
) -> List[InvoiceProjectAssignment]:
    """
    Replace every assignment of ``invoice`` with ``items``.

    The caller commits; an empty ``items`` clears all assignments.
    """
    rows = build_assignments(db, invoice, items, assigned_by)
    for existing in list_assignments(db, invoice.id):
        db.delete(existing)
    db.flush()
    for row in rows:
        db.add(row)
    logger.info("Replaced assignments of supplier invoice %s with %d row(s)", invoice.id, len(rows))
    return rows


def list_assignments(db: Session, invoice_id: str) -> List[InvoiceProjectAssignment]:
    return list(db.exec(select(InvoiceProjectAssignment).where(
        InvoiceProjectAssignment.supplier_invoice_id == invoice_id
    )).all())


def delete_supplier_invoice(db: Session, invoice_id: str) -> SupplierInvoice:
    """
    Delete a supplier invoice after its dependent rows.

    Assignments go first, then AI processing results, then the invoice itself,
    all in one commit.
    """
    invoice = db.get(SupplierInvoice, invoice_id)
    if invoice is None:
        raise NotFound(error="Supplier invoice not found")

    for assignment in list_assignments(db, invoice_id):
        db.delete(assignment)
    for result in db.exec(select(AIProcessingResult).where(
        AIProcessingResult.supplier_invoice_id == invoice_id
    )).all():
        db.delete(result)
    db.flush()
    db.delete(invoice)
    db.commit()
    logger.info("Deleted supplier invoice %s", invoice_id)
    return invoice
