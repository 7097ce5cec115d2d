"""
ClickUp synchronisation.

Pulls the folders of the configured ClickUp space into ``projects`` and pushes
project financial summaries back to ClickUp as tasks.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from margin_tracker.core.dates import utc_now_iso
from margin_tracker.integrations.clickup import ClickUpClient, extract_client_from_folder_name
from margin_tracker.models import (
    ClickUpSyncLog, ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project,
)
from margin_tracker.services.financials import calculate_project_financials
from margin_tracker.services.sync_runs import SyncFailed, SyncRun

logger = logging.getLogger(__name__)

FOLDER_SYNC_TYPE = "project_folders"


def upsert_project_from_folder(db: Session, folder: Dict[str, Any]) -> bool:
    """
    Create or update the project mirroring one ClickUp folder.

    Returns:
        bool: True when a new project was created
    """
    name = folder["name"]
    values = {
        "clickup_folder_id": str(folder["id"]),
        "name": name,
        "description": f"ClickUp project folder: {name}",
        "client_name": extract_client_from_folder_name(name),
        "status": "active",
        "last_sync_at": utc_now_iso(),
        "sync_status": "success",
    }
    project = db.exec(
        select(Project).where(Project.clickup_folder_id == values["clickup_folder_id"])
    ).first()
    created = project is None
    if created:
        project = Project(**values)
    else:
        for key, value in values.items():
            setattr(project, key, value)
        project.updated_at = utc_now_iso()
    db.add(project)
    db.commit()
    return created


def sync_project_folders(db: Session, client: ClickUpClient) -> SyncRun:
    """
    Mirror every visible ClickUp folder (archived ones included) as a project.

    A folder that fails to save is logged and skipped. A failure to list the
    folders marks the run failed and raises :class:`SyncFailed`.
    """
    run = SyncRun(db, ClickUpSyncLog, FOLDER_SYNC_TYPE).start()
    try:
        folders = client.get_folders(archived=True).get("folders", [])
        for folder in folders:
            if folder.get("hidden"):
                continue
            run.processed += 1
            try:
                if upsert_project_from_folder(db, folder):
                    run.created += 1
                else:
                    run.updated += 1
            except Exception:
                db.rollback()
                logger.warning("Failed to sync ClickUp folder %s", folder.get("id"), exc_info=True)
    except Exception as exc:
        run.fail(str(exc))
        raise SyncFailed(str(exc), details=str(exc), records_processed=run.processed) from exc
    run.complete()
    return run


class ProjectSyncService:
    """Pushes projects to ClickUp as ``[Project] <name>`` tasks."""

    def __init__(self, client: ClickUpClient, db: Session):
        self.client = client
        self.db = db

    def project_financials(self, project: Project) -> Dict[str, Any]:
        invoices = self.db.exec(select(ClientInvoice).where(ClientInvoice.project_id == project.id)).all()
        expenses = self.db.exec(select(ManualExpense).where(ManualExpense.project_id == project.id)).all()
        assignments = self.db.exec(
            select(InvoiceProjectAssignment).where(InvoiceProjectAssignment.project_id == project.id)
        ).all()
        return calculate_project_financials(invoices, expenses, assignments)

    @staticmethod
    def build_description(project: Project, financials: Optional[Dict[str, Any]]) -> str:
        lines = [f"**Project:** {project.name}", ""]
        if project.description:
            lines += [f"**Description:** {project.description}", ""]
        if financials:
            revenue = financials["revenue"]["paid"]
            costs = financials["costs"]["total"]
            margin = financials["margin"]
            lines += [
                "**Financial Summary:**",
                f"- Revenue: €{revenue:,.2f}",
                f"- Costs: €{costs:,.2f}",
                f"- Margin: €{margin['amount']:,.2f} ({margin['percentage']:.1f}%)",
                "",
            ]
        lines.append("**Integration:** Synced from Tinkso Margin Tracker")
        lines.append(f"**Last Updated:** {utc_now_iso()}")
        return "\n".join(lines)

    def sync_project(self, project: Project) -> Dict[str, Any]:
        """Create or update the ClickUp task of one project."""
        task_data = {
            "name": f"[Project] {project.name}",
            "description": self.build_description(project, self.project_financials(project)),
        }
        if project.clickup_id:
            self.client.update_task(project.clickup_id, task_data)
        else:
            task = self.client.create_task({**task_data, "tags": ["project", "tinkso-margin-tracker"]})
            project.clickup_id = str(task["id"])
        project.last_sync_at = utc_now_iso()
        project.sync_status = "success"
        self.db.add(project)
        self.db.commit()
        return {"success": True, "clickup_task_id": project.clickup_id}

    def sync_all(self) -> Dict[str, Any]:
        errors: List[str] = []
        synced = 0
        projects = self.db.exec(select(Project).where(Project.status != "archived")).all()
        for project in projects:
            try:
                self.sync_project(project)
                synced += 1
            except Exception as exc:
                self.db.rollback()
                logger.warning("Failed to push project %s to ClickUp: %s", project.id, exc)
                errors.append(f"Project {project.name}: {exc}")
        return {"success": not errors, "synced_count": synced, "errors": errors}
