"""
Project Endpoints Module

Project listing, detail with financials, edits, archiving, and primary client
assignment. Projects are never hard-deleted: DELETE archives them.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import utc_now_iso
from margin_tracker.core.errors import NotFound, ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.models import (
    Client, ClientInvoice, ClientInvoiceLineItem, ClientProjectAssociation, Project, SupplierInvoice,
)
from margin_tracker.schemas.project import AssignClientRequest, ProjectCreate, ProjectPatch, ProjectUpdate
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.financials import (
    calculate_project_financials, client_invoice_counts, group_by, supplier_assignment_counts,
)
from margin_tracker.services.queries import financials_by_project, project_rows

router = APIRouter()

PATCHABLE_STATUSES = ("active", "completed", "on-hold")


def get_project_or_404(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise NotFound(error="Project not found")
    return project


@router.get("")
def list_projects(
    includeFinancials: bool = False,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Retrieve all projects, most recently updated first.

    Args:
        includeFinancials: Attach revenue/cost/margin figures to every project
        db: Database session
        current_user: Currently authenticated user

    Returns:
        dict: ``{"projects": [...], "count": n}``
    """
    projects = db.exec(select(Project).order_by(Project.updated_at.desc())).all()
    if includeFinancials:
        financials = financials_by_project(db, projects)
        payload = [row(p, financials=financials[p.id]) for p in projects]
    else:
        payload = [row(p) for p in projects]
    return with_timestamp({"projects": payload, "count": len(payload)})


@router.post("")
def create_project(
    project_in: ProjectCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Create a new project. New projects always start as "active".
    """
    project = Project(**project_in.model_dump(mode="json"), status="active")
    db.add(project)
    db.commit()
    db.refresh(project)
    return with_timestamp({"project": row(project), "message": "Project created successfully"})


@router.get("/{project_id}")
def read_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Get a project with its financials, invoice statistics and the supplier
    invoices assigned to it.

    Raises:
        NotFound: If the project doesn't exist
    """
    project = get_project_or_404(db, project_id)
    data = project_rows(db, [project.id])[project.id]
    invoices, expenses, assignments = data["invoices"], data["expenses"], data["assignments"]

    supplier_ids = list({a.supplier_invoice_id for a in assignments})
    suppliers = {
        s.id: s for s in db.exec(select(SupplierInvoice).where(SupplierInvoice.id.in_(supplier_ids))).all()
    } if supplier_ids else {}

    processed = []
    for assignment in assignments:
        supplier = suppliers.get(assignment.supplier_invoice_id)
        if supplier is None:
            continue
        assigned = assignment.amount_assigned or 0
        if assigned > 0 and assigned >= (supplier.amount_total or 0):
            assignment_status = "fully-assigned"
        elif assigned > 0:
            assignment_status = "partially-assigned"
        else:
            assignment_status = "unassigned"
        processed.append(row(
            supplier,
            assignedAmount=assigned,
            assignmentStatus=assignment_status,
            assignmentType=assignment.assignment_type,
            processedDate=assignment.assigned_at,
            assignmentId=assignment.id,
        ))

    associations = db.exec(
        select(ClientProjectAssociation).where(ClientProjectAssociation.project_id == project.id)
    ).all()

    return with_timestamp(row(
        project,
        client_invoices=[row(i) for i in invoices],
        manual_expenses=[row(e) for e in expenses],
        client_project_associations=[row(a) for a in associations],
        financials=calculate_project_financials(invoices, expenses, assignments),
        invoiceStats={
            "client": client_invoice_counts(invoices),
            "supplier": supplier_assignment_counts(list(suppliers.values()), assignments),
        },
        processedSupplierInvoices=processed,
    ))


@router.put("/{project_id}")
def update_project(
    project_id: str,
    project_in: ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Update a project with the fields present in the request body.
    """
    project = get_project_or_404(db, project_id)
    for key, value in project_in.model_dump(mode="json", exclude_unset=True).items():
        setattr(project, key, value)
    project.updated_at = utc_now_iso()
    db.add(project)
    db.commit()
    db.refresh(project)
    return with_timestamp({"project": row(project), "message": "Project updated successfully"})


@router.patch("/{project_id}")
def patch_project(
    project_id: str,
    patch: ProjectPatch,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Change a project's status or timeline.

    Raises:
        ValidationError: Unknown status, or an end date before the start date
    """
    if patch.status is not None and patch.status not in PATCHABLE_STATUSES:
        raise ValidationError(error="Invalid status. Must be one of: active, completed, on-hold")

    project = get_project_or_404(db, project_id)
    for key, value in patch.model_dump(mode="json", exclude_unset=True).items():
        setattr(project, key, value)
    project.updated_at = utc_now_iso()
    db.add(project)
    db.commit()
    db.refresh(project)
    return with_timestamp({
        "success": True,
        "project": row(project),
        "message": "Project updated successfully",
    })


@router.delete("/{project_id}")
def archive_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Archive a project. Its invoices, expenses and assignments are kept.
    """
    project = get_project_or_404(db, project_id)
    project.status = "archived"
    project.updated_at = utc_now_iso()
    db.add(project)
    db.commit()
    return with_timestamp({"message": "Project archived successfully"})


@router.get("/{project_id}/invoices")
def list_project_invoices(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Client invoices of a project with their line items, newest first.
    """
    project = get_project_or_404(db, project_id)
    invoices = db.exec(
        select(ClientInvoice)
        .where(ClientInvoice.project_id == project.id)
        .order_by(ClientInvoice.issue_date.desc())
    ).all()
    line_items = group_by(db.exec(
        select(ClientInvoiceLineItem).where(ClientInvoiceLineItem.invoice_id.in_([i.id for i in invoices]))
    ).all(), "invoice_id") if invoices else {}

    total_amount = sum(i.amount_total or 0 for i in invoices)
    paid_amount = sum(i.amount_total or 0 for i in invoices if i.status == "paid")
    return with_timestamp({
        "success": True,
        "invoices": [row(i, line_items=[row(li) for li in line_items.get(i.id, [])]) for i in invoices],
        "summary": {
            "total_invoices": len(invoices),
            "total_amount": total_amount,
            "paid_amount": paid_amount,
            "pending_amount": total_amount - paid_amount,
            "currency": invoices[0].currency if invoices else project.currency,
        },
    })


@router.post("/{project_id}/client")
def assign_client(
    project_id: str,
    request: AssignClientRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Make a client the primary client of a project.

    The client's invoices that are not linked to any project yet are linked
    to this one.

    Raises:
        NotFound: If the project or the client doesn't exist
    """
    project = get_project_or_404(db, project_id)
    client = db.get(Client, request.client_id)
    if not client:
        raise NotFound(error="Client not found")

    project.client_name = client.name
    project.updated_at = utc_now_iso()
    db.add(project)

    association = db.exec(select(ClientProjectAssociation).where(
        ClientProjectAssociation.client_id == client.id,
        ClientProjectAssociation.project_id == project.id,
    )).first()
    if association is None:
        association = ClientProjectAssociation(client_id=client.id, project_id=project.id)
    association.role = "primary"
    db.add(association)

    unlinked = db.exec(select(ClientInvoice).where(
        ClientInvoice.client_id == client.id,
        ClientInvoice.project_id.is_(None),
    )).all()
    for invoice in unlinked:
        invoice.project_id = project.id
        invoice.updated_at = utc_now_iso()
        db.add(invoice)
    db.commit()
    db.refresh(project)

    message = f'Client "{client.name}" assigned to project successfully'
    if unlinked:
        message += f" and {len(unlinked)} client invoices automatically linked"
    return with_timestamp({
        "success": True,
        "project": row(project),
        "linked_invoices": len(unlinked),
        "message": message,
    })


@router.delete("/{project_id}/client")
def unassign_client(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Remove the primary client of a project and unlink that client's invoices.
    """
    project = get_project_or_404(db, project_id)
    client_name = project.client_name

    unlinked_count = 0
    if client_name:
        client_ids = [c.id for c in db.exec(select(Client).where(Client.name == client_name)).all()]
        if client_ids:
            invoices = db.exec(select(ClientInvoice).where(
                ClientInvoice.project_id == project.id,
                ClientInvoice.client_id.in_(client_ids),
            )).all()
            for invoice in invoices:
                invoice.project_id = None
                invoice.updated_at = utc_now_iso()
                db.add(invoice)
            unlinked_count = len(invoices)
            for association in db.exec(select(ClientProjectAssociation).where(
                ClientProjectAssociation.project_id == project.id,
                ClientProjectAssociation.client_id.in_(client_ids),
            )).all():
                db.delete(association)

    project.client_name = None
    project.updated_at = utc_now_iso()
    db.add(project)
    db.commit()
    db.refresh(project)

    message = "Client assignment removed successfully"
    if unlinked_count:
        message += f" and {unlinked_count} client invoices unlinked"
    return with_timestamp({
        "success": True,
        "project": row(project),
        "unlinked_invoices": unlinked_count,
        "message": message,
    })
