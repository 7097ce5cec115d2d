"""
Expense Endpoints Module

Manual expenses are costs entered by hand and count toward a project's costs
like assigned supplier invoices do.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from margin_tracker.api import deps
from margin_tracker.api.responses import row, with_timestamp
from margin_tracker.core.dates import utc_now_iso
from margin_tracker.core.errors import NotFound, ValidationError
from margin_tracker.db.session import get_db
from margin_tracker.models import ManualExpense, Project
from margin_tracker.schemas.expense import ExpenseCreate, ExpenseUpdate
from margin_tracker.schemas.user import CurrentUser
from margin_tracker.services.financials import expense_statistics

router = APIRouter()


def net_amount(amount: float, vat_included: bool, vat_amount: Optional[float]) -> float:
    """Amount without VAT when the entered amount includes it."""
    if vat_included and vat_amount:
        return amount - vat_amount
    return amount


@router.get("")
def list_expenses(
    includeStatistics: bool = False,
    category: Optional[str] = None,
    projectId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Retrieve manual expenses, most recent expense date first.

    Statistics, when requested, cover every expense regardless of the filters.

    Args:
        includeStatistics: Add totals by category and project
        category: Keep only this category
        projectId: Keep only expenses booked on this project
        startDate: Earliest expense date (inclusive, YYYY-MM-DD)
        endDate: Latest expense date (inclusive, YYYY-MM-DD)
        db: Database session
        current_user: Currently authenticated user
    """
    statement = select(ManualExpense).order_by(ManualExpense.expense_date.desc())
    if category:
        statement = statement.where(ManualExpense.category == category)
    if projectId:
        statement = statement.where(ManualExpense.project_id == projectId)
    if startDate:
        statement = statement.where(ManualExpense.expense_date >= startDate)
    if endDate:
        statement = statement.where(ManualExpense.expense_date <= endDate)
    expenses = db.exec(statement).all()

    project_names = {p.id: p.name for p in db.exec(select(Project)).all()}
    rows = [
        row(
            e,
            projectName=project_names.get(e.project_id),
            addedBy=e.added_by or "System",
            netAmount=e.net_amount if e.net_amount is not None else e.amount,
        )
        for e in expenses
    ]

    payload: Dict[str, Any] = {
        "expenses": rows,
        "total": len(rows),
        "filters": {
            "category": category,
            "projectId": projectId,
            "startDate": startDate,
            "endDate": endDate,
        },
    }
    if includeStatistics:
        every_expense = db.exec(select(ManualExpense)).all()
        payload["statistics"] = expense_statistics(every_expense, project_names)
    return with_timestamp(payload)


@router.post("")
def create_expense(
    expense_in: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Record a manual expense. ``added_by`` is the caller's email.
    """
    expense = ManualExpense(
        **expense_in.model_dump(mode="json"),
        added_by=current_user.email or "Unknown User",
        net_amount=net_amount(expense_in.amount, expense_in.vat_included, expense_in.vat_amount),
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return with_timestamp({
        "success": True,
        "expense": row(expense),
        "message": "Manual expense created successfully",
    })


@router.put("")
def update_expense(
    expense_in: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Update an expense identified by the ``id`` in the body. The net amount is
    recomputed from the resulting amount and VAT fields.
    """
    expense = db.get(ManualExpense, expense_in.id)
    if not expense:
        raise NotFound(error="Expense not found")

    for key, value in expense_in.model_dump(mode="json", exclude_unset=True, exclude={"id"}).items():
        setattr(expense, key, value)
    expense.net_amount = net_amount(expense.amount, expense.vat_included, expense.vat_amount)
    expense.updated_at = utc_now_iso()
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return with_timestamp({
        "success": True,
        "expense": row(expense),
        "message": "Manual expense updated successfully",
    })


@router.delete("")
def delete_expense(
    id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(deps.get_current_user),
) -> Dict[str, Any]:
    """
    Delete the expense given by the ``id`` query parameter.
    """
    if not id:
        raise ValidationError(error="Expense ID is required for deletion")
    expense = db.get(ManualExpense, id)
    if not expense:
        raise NotFound(error="Expense not found")
    db.delete(expense)
    db.commit()
    return with_timestamp({"success": True, "message": "Manual expense deleted successfully"})
