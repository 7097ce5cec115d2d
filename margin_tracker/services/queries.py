"""Loaders that fetch the rows the aggregation functions work on."""
from typing import Any, Dict, List, Sequence

from sqlmodel import Session, select

from margin_tracker.models import (
    AIProcessingResult, ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project,
)
from margin_tracker.services.financials import calculate_project_financials, group_by


def project_rows(db: Session, project_ids: Sequence[str]) -> Dict[str, Dict[str, List[Any]]]:
    """Invoices, expenses and assignments of each project, keyed by project id."""
    if not project_ids:
        return {}
    invoices = group_by(db.exec(
        select(ClientInvoice).where(ClientInvoice.project_id.in_(project_ids))
    ).all(), "project_id")
    expenses = group_by(db.exec(
        select(ManualExpense).where(ManualExpense.project_id.in_(project_ids))
    ).all(), "project_id")
    assignments = group_by(db.exec(
        select(InvoiceProjectAssignment).where(InvoiceProjectAssignment.project_id.in_(project_ids))
    ).all(), "project_id")
    return {
        project_id: {
            "invoices": invoices.get(project_id, []),
            "expenses": expenses.get(project_id, []),
            "assignments": assignments.get(project_id, []),
        }
        for project_id in project_ids
    }


def financials_by_project(db: Session, projects: Sequence[Project]) -> Dict[str, Dict[str, Any]]:
    rows = project_rows(db, [p.id for p in projects])
    return {
        project_id: calculate_project_financials(data["invoices"], data["expenses"], data["assignments"])
        for project_id, data in rows.items()
    }


def latest_results_by_invoice(db: Session, invoice_ids: Sequence[str]) -> Dict[str, AIProcessingResult]:
    """Most recent AI processing result of each supplier invoice."""
    if not invoice_ids:
        return {}
    results = db.exec(
        select(AIProcessingResult)
        .where(AIProcessingResult.supplier_invoice_id.in_(invoice_ids))
        .order_by(AIProcessingResult.processed_at.desc())
    ).all()
    latest: Dict[str, AIProcessingResult] = {}
    for result in results:
        latest.setdefault(result.supplier_invoice_id, result)
    return latest
