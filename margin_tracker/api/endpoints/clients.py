"""
Client Endpoints Module

Client listing with derived revenue and activity metrics, and manual client
creation. Most clients are created by the Qonto sync.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.db.session import get_db
from margin_tracker.models import Client, ClientInvoice, ClientProjectAssociation, Project
from margin_tracker.schemas.client import ClientCreate
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.financials import client_metrics, client_statistics, group_by

router = APIRouter()


@router.get("")
def list_clients(
    includeStatistics: bool = False,
    status: Optional[str] = None,
    includeProjects: bool = False,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Retrieve clients with their revenue, project and activity metrics.

    Args:
        includeStatistics: Add aggregate statistics over all clients
        status: Keep only clients whose derived status is "active", "inactive" or "on-hold"
        includeProjects: Attach the associated projects to each client
        db: Database session
        current_user: Currently authenticated user

    Returns:
        dict: ``{"clients", "total", "filters", "statistics"?}``
    """
    clients = db.exec(select(Client).order_by(Client.name)).all()
    invoices = group_by(db.exec(select(ClientInvoice).where(ClientInvoice.client_id.is_not(None))).all(), "client_id")
    associations = db.exec(select(ClientProjectAssociation)).all()
    projects = {p.id: p for p in db.exec(select(Project)).all()}

    projects_by_client: Dict[str, list] = {}
    for association in associations:
        project = projects.get(association.project_id)
        if project is not None:
            projects_by_client.setdefault(association.client_id, []).append(project)

    detailed = []
    for client in clients:
        client_projects = projects_by_client.get(client.id, [])
        metrics = client_metrics(client, invoices.get(client.id, []), client_projects)
        extra = dict(metrics)
        if includeProjects:
            extra["projects"] = [
                {"id": p.id, "name": p.name, "status": p.status} for p in client_projects
            ]
        detailed.append(row(client, **extra))

    filtered = [c for c in detailed if c["status"] == status] if status else detailed

    payload: Dict[str, Any] = {
        "clients": filtered,
        "total": len(filtered),
        "filters": {
            "status": status or "all",
            "includeProjects": includeProjects,
            "includeStatistics": includeStatistics,
        },
    }
    if includeStatistics:
        payload["statistics"] = client_statistics(detailed)
    return with_timestamp(payload)


@router.post("")
def create_client(
    client_in: ClientCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Create a client by hand.
    """
    client = Client(**client_in.model_dump())
    db.add(client)
    db.commit()
    db.refresh(client)
    return with_timestamp({"success": True, "client": row(client), "message": "Client created successfully"})
