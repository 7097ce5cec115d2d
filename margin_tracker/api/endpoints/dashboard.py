"""
Dashboard Endpoints Module

Per-project financials are nominal, in each project's own currency. The
portfolio totals convert every project's figures with ``FX_RATES_TO_EUR``.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.config import settings
from margin_tracker.db.session import get_db
from margin_tracker.models import ClientInvoice, Project
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.financials import summarize_portfolio
from margin_tracker.services.queries import financials_by_project

router = APIRouter()


def summary_stats(db: Session) -> Dict[str, Any]:
    projects = db.exec(select(Project)).all()
    statuses = list(db.exec(select(ClientInvoice.status)).all())
    return {
        "projects": {
            "total": len(projects),
            "active": sum(1 for p in projects if p.status == "active"),
        },
        "invoices": {
            "pending": statuses.count("pending"),
            "overdue": statuses.count("overdue"),
        },
        "financials": summarize_portfolio(
            projects, financials_by_project(db, projects), settings.FX_RATES_TO_EUR
        ),
    }


@router.get("")
def read_dashboard(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Every project with its financials, most recently updated first, plus the
    portfolio summary.
    """
    projects = db.exec(select(Project).order_by(Project.updated_at.desc())).all()
    financials = financials_by_project(db, projects)
    return with_timestamp({
        "projects": [row(p, financials=financials[p.id]) for p in projects],
        "summary": summary_stats(db),
    })


@router.get("/summary")
def read_dashboard_summary(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """Counts and portfolio totals only."""
    return with_timestamp(summary_stats(db))
