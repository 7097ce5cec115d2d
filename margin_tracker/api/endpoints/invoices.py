"""
Invoice Endpoints Module

Unified view over client and supplier invoices, and manual invoice entry.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import parse_datetime
from margin_tracker.core.errors import ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.models import (
    Client, ClientInvoice, InvoiceProjectAssignment, Project, SupplierInvoice,
)
from margin_tracker.schemas.invoice import InvoiceCreate
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.financials import group_by, unified_invoice_statistics

router = APIRouter()


def _client_row(invoice: ClientInvoice, client_names: Dict[str, str], project_names: Dict[str, str]) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "invoiceNumber": invoice.invoice_number,
        "type": "client",
        "projectName": project_names.get(invoice.project_id),
        "clientSupplierName": client_names.get(invoice.client_id) or "Unknown Client",
        "amount": invoice.amount_total,
        "currency": invoice.currency,
        "status": invoice.status or "draft",
        "issueDate": invoice.issue_date,
        "dueDate": invoice.due_date,
        "paidDate": invoice.paid_date,
        "description": invoice.description,
        "documentUrl": invoice.pdf_url,
        "isAutoDetected": invoice.is_auto_detected,
        "vatAmount": invoice.amount_vat,
        "netAmount": invoice.amount_net,
        "projectId": invoice.project_id,
        "clientId": invoice.client_id,
        "qontoId": invoice.qonto_id,
    }


def _supplier_row(invoice: SupplierInvoice, first_assignment: Optional[InvoiceProjectAssignment],
                  project_names: Dict[str, str]) -> Dict[str, Any]:
    project_id = first_assignment.project_id if first_assignment else None
    return {
        "id": invoice.id,
        "invoiceNumber": f"SUP-{invoice.id[:8]}",
        "type": "supplier",
        "projectName": project_names.get(project_id),
        "clientSupplierName": invoice.supplier_name or "Unknown Supplier",
        "amount": invoice.amount_total,
        "currency": invoice.currency,
        "status": invoice.status,
        "issueDate": invoice.invoice_date,
        "dueDate": invoice.invoice_date,
        "paidDate": invoice.updated_at if invoice.status == "paid" else None,
        "description": invoice.description,
        "documentUrl": invoice.pdf_url,
        "isAutoDetected": invoice.qonto_id is not None,
        "vatAmount": invoice.amount_vat,
        "netAmount": invoice.amount_net if invoice.amount_net is not None else invoice.amount_total,
        "projectId": project_id,
        "qontoId": invoice.qonto_id,
    }


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _sort_key(invoice: Dict[str, Any]) -> float:
    issued = parse_datetime(invoice["issueDate"])
    return issued.timestamp() if issued else 0.0


@router.get("")
def list_invoices(
    type: Optional[str] = None,
    status: Optional[str] = None,
    projectId: Optional[str] = None,
    includeStatistics: bool = False,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Client and supplier invoices in one list, newest first.

    Args:
        type: "client" or "supplier"; both when omitted
        status: Keep only invoices with this status
        projectId: Client invoices of the project, supplier invoices assigned to it
        includeStatistics: Add client, supplier and combined statistics
        db: Database session
        current_user: Currently authenticated user
    """
    client_invoices: List[ClientInvoice] = []
    supplier_invoices: List[SupplierInvoice] = []

    if type != "supplier":
        statement = select(ClientInvoice)
        if projectId:
            statement = statement.where(ClientInvoice.project_id == projectId)
        if status:
            statement = statement.where(ClientInvoice.status == status)
        client_invoices = list(db.exec(statement).all())

    assignments: Dict[str, List[InvoiceProjectAssignment]] = {}
    if type != "client":
        statement = select(SupplierInvoice)
        if status:
            statement = statement.where(SupplierInvoice.status == status)
        supplier_invoices = list(db.exec(statement).all())
        assignments = group_by(db.exec(select(InvoiceProjectAssignment)).all(), "supplier_invoice_id")
        if projectId:
            supplier_invoices = [
                invoice for invoice in supplier_invoices
                if any(a.project_id == projectId for a in assignments.get(invoice.id, []))
            ]

    client_names = {c.id: c.name for c in db.exec(select(Client)).all()}
    project_names = {p.id: p.name for p in db.exec(select(Project)).all()}

    rows = [_client_row(i, client_names, project_names) for i in client_invoices]
    for invoice in supplier_invoices:
        invoice_assignments = assignments.get(invoice.id, [])
        if projectId:
            invoice_assignments = [a for a in invoice_assignments if a.project_id == projectId]
        first = invoice_assignments[0] if invoice_assignments else None
        rows.append(_supplier_row(invoice, first, project_names))
    rows.sort(key=_sort_key, reverse=True)

    payload: Dict[str, Any] = {
        "invoices": rows,
        "total": len(rows),
        "filters": {
            "type": type or "all",
            "status": status or "all",
            "projectId": projectId,
        },
    }
    if includeStatistics:
        payload["statistics"] = unified_invoice_statistics(client_invoices, supplier_invoices)
    return with_timestamp(payload)


@router.post("")
def create_invoice(
    invoice_in: InvoiceCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Enter a client or supplier invoice by hand.

    Raises:
        ValidationError: A supplier invoice without a supplier name
    """
    common = {
        "amount_total": invoice_in.amount,
        "amount_net": invoice_in.net_amount or invoice_in.amount,
        "amount_vat": invoice_in.vat_amount or 0,
        "currency": invoice_in.currency,
        "description": invoice_in.description,
        "pdf_url": invoice_in.document_url,
    }
    if invoice_in.type == "client":
        invoice = ClientInvoice(
            **common,
            invoice_number=invoice_in.invoice_number,
            client_id=invoice_in.client_id,
            project_id=invoice_in.project_id,
            status=invoice_in.status or "draft",
            issue_date=_iso(invoice_in.issue_date),
            due_date=_iso(invoice_in.due_date),
        )
    else:
        if not invoice_in.supplier_name:
            raise ValidationError(error="Supplier name is required")
        invoice = SupplierInvoice(
            **common,
            supplier_name=invoice_in.supplier_name,
            status=invoice_in.status or "pending-assignment",
            invoice_date=_iso(invoice_in.issue_date),
        )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return with_timestamp({
        "success": True,
        "invoice": row(invoice),
        "message": f"{invoice_in.type} invoice created successfully",
    })
