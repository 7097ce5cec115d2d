"""
Financial aggregation.

Pure functions over rows that were already loaded from the database. Nothing in
this module touches a session, so every figure can be recomputed from plain
model instances.

Amounts are summed nominally in the currency they were recorded in. The only
place currencies are normalised is :func:`summarize_portfolio`.
"""
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from margin_tracker.core.dates import parse_datetime, utc_now
from margin_tracker.models import (
    ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project,
    SupplierInvoice, UNASSIGNED_STATUSES,
)

HIGH_CONFIDENCE_THRESHOLD = 80


def _amount(value: Optional[float]) -> float:
    return float(value or 0)


def margin_percentage(margin: float, paid_revenue: float) -> float:
    """Margin as a percentage of paid revenue, 0 when nothing has been paid."""
    if paid_revenue > 0:
        return margin / paid_revenue * 100
    return 0.0


def calculate_revenue(invoices: Iterable[ClientInvoice]) -> Dict[str, float]:
    revenue = {"total": 0.0, "paid": 0.0, "pending": 0.0, "overdue": 0.0, "draft": 0.0}
    for invoice in invoices:
        amount = _amount(invoice.amount_total)
        revenue["total"] += amount
        if invoice.status in ("paid", "pending", "overdue", "draft"):
            revenue[invoice.status] += amount
    return revenue


def calculate_costs(
    expenses: Iterable[ManualExpense],
    assignments: Iterable[InvoiceProjectAssignment],
) -> Dict[str, float]:
    manual = sum(_amount(expense.amount) for expense in expenses)
    supplier = sum(_amount(assignment.amount_assigned) for assignment in assignments)
    return {"total": manual + supplier, "manual": manual, "supplier": supplier}


def calculate_project_financials(
    client_invoices: Iterable[ClientInvoice],
    expenses: Iterable[ManualExpense],
    assignments: Iterable[InvoiceProjectAssignment],
) -> Dict[str, Any]:
    """
    Revenue, cost and margin for a single project.

    Args:
        client_invoices: Client invoices linked to the project
        expenses: Manual expenses booked on the project
        assignments: Supplier invoice assignments pointing at the project

    Returns:
        dict: ``{"revenue": {...}, "costs": {...}, "margin": {"amount", "percentage"}}``
    """
    revenue = calculate_revenue(client_invoices)
    costs = calculate_costs(expenses, assignments)
    margin = revenue["paid"] - costs["total"]
    return {
        "revenue": revenue,
        "costs": costs,
        "margin": {
            "amount": margin,
            "percentage": margin_percentage(margin, revenue["paid"]),
        },
    }


def client_invoice_counts(invoices: Sequence[ClientInvoice]) -> Dict[str, int]:
    counts = {"total": len(invoices), "paid": 0, "pending": 0, "overdue": 0, "draft": 0}
    for invoice in invoices:
        if invoice.status in counts:
            counts[invoice.status] += 1
    return counts


def assigned_totals(assignments: Iterable[InvoiceProjectAssignment]) -> Dict[str, float]:
    """Sum of ``amount_assigned`` per supplier invoice id."""
    totals: Dict[str, float] = defaultdict(float)
    for assignment in assignments:
        totals[assignment.supplier_invoice_id] += _amount(assignment.amount_assigned)
    return dict(totals)


def supplier_assignment_counts(
    supplier_invoices: Sequence[SupplierInvoice],
    assignments: Iterable[InvoiceProjectAssignment],
) -> Dict[str, int]:
    """
    Classify supplier invoices by how much of their total has been attributed.

    Only the given ``assignments`` are summed. A project detail passes its own
    rows, so an invoice split across projects counts as partially assigned there.
    """
    totals = assigned_totals(assignments)
    counts = {"total": len(supplier_invoices), "fullyAssigned": 0, "partiallyAssigned": 0, "unassigned": 0}
    for invoice in supplier_invoices:
        assigned = totals.get(invoice.id, 0.0)
        if assigned > 0 and assigned >= _amount(invoice.amount_total):
            counts["fullyAssigned"] += 1
        elif assigned > 0:
            counts["partiallyAssigned"] += 1
        else:
            counts["unassigned"] += 1
    return counts


def convert_amount(amount: float, currency: Optional[str], rates: Mapping[str, float]) -> float:
    """Convert to the reference currency, counting unknown currencies at par."""
    return amount * rates.get((currency or "EUR").upper(), 1.0)


def summarize_portfolio(
    projects: Sequence[Project],
    financials_by_project: Mapping[str, Dict[str, Any]],
    rates: Mapping[str, float],
) -> Dict[str, float]:
    """
    Portfolio totals across projects.

    Each project's figures are converted with ``rates`` using the project's
    currency before being added together.
    """
    total_revenue = 0.0
    total_costs = 0.0
    for project in projects:
        financials = financials_by_project.get(project.id)
        if not financials:
            continue
        total_revenue += convert_amount(financials["revenue"]["paid"], project.currency, rates)
        total_costs += convert_amount(financials["costs"]["total"], project.currency, rates)
    total_margin = total_revenue - total_costs
    return {
        "totalRevenue": total_revenue,
        "totalCosts": total_costs,
        "totalMargin": total_margin,
        "marginPercentage": margin_percentage(total_margin, total_revenue),
    }


# --- Clients -----------------------------------------------------------------

def client_metrics(
    client: Any,
    invoices: Sequence[ClientInvoice],
    projects: Sequence[Project],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Derived figures shown on the client list.

    Args:
        client: The client row
        invoices: That client's invoices
        projects: Projects associated with the client
        now: Reference time for the 30-day activity window

    Returns:
        dict with totalRevenue, totalProjects, activeProjects, projectNames,
        lastInvoiceDate, recentActivity and the derived status
    """
    now = now or utc_now()
    total_revenue = sum(_amount(i.amount_total) for i in invoices if i.status == "paid")
    active_projects = [p for p in projects if p.status == "active"]

    invoice_dates = [d for d in (parse_datetime(i.issue_date) for i in invoices) if d is not None]
    last_invoice = max(invoice_dates) if invoice_dates else None
    is_recent = bool(last_invoice and (now - last_invoice).days <= 30)

    if not client.is_active:
        status = "inactive"
    elif active_projects:
        status = "active"
    elif projects and not is_recent:
        status = "on-hold"
    else:
        status = "active"

    return {
        "totalRevenue": total_revenue,
        "totalProjects": len(projects),
        "activeProjects": len(active_projects),
        "projectNames": [p.name for p in projects],
        "lastInvoiceDate": last_invoice.date().isoformat() if last_invoice else None,
        "recentActivity": "Recent" if is_recent else "No recent activity",
        "status": status,
        "paymentTerms": "Net 30",
        "qontoStatus": "connected" if client.qonto_id else "pending",
    }


def client_statistics(metrics: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    total = len(metrics)
    total_revenue = sum(m["totalRevenue"] for m in metrics)
    return {
        "total": total,
        "active": sum(1 for m in metrics if m["status"] == "active"),
        "inactive": sum(1 for m in metrics if m["status"] == "inactive"),
        "onHold": sum(1 for m in metrics if m["status"] == "on-hold"),
        "totalRevenue": total_revenue,
        "totalProjects": sum(m["totalProjects"] for m in metrics),
        "averageRevenuePerClient": total_revenue / total if total else 0,
        "recentActivityCount": sum(1 for m in metrics if m["recentActivity"] == "Recent"),
    }


# --- Invoices ----------------------------------------------------------------

def unified_invoice_statistics(
    client_invoices: Sequence[ClientInvoice],
    supplier_invoices: Sequence[SupplierInvoice],
) -> Dict[str, Any]:
    client_stats = {
        "total": len(client_invoices),
        "paid": 0, "pending": 0, "overdue": 0, "draft": 0,
        "totalRevenue": 0.0,
        "pendingRevenue": 0.0,
    }
    for invoice in client_invoices:
        if invoice.status in ("paid", "pending", "overdue", "draft"):
            client_stats[invoice.status] += 1
        if invoice.status == "paid":
            client_stats["totalRevenue"] += _amount(invoice.amount_total)
        elif invoice.status in ("pending", "overdue"):
            client_stats["pendingRevenue"] += _amount(invoice.amount_total)

    supplier_stats = {
        "total": len(supplier_invoices),
        "assigned": 0,
        "unassigned": 0,
        "totalCosts": 0.0,
        "pendingCosts": 0.0,
    }
    for invoice in supplier_invoices:
        if invoice.status == "assigned":
            supplier_stats["assigned"] += 1
        elif invoice.status in UNASSIGNED_STATUSES:
            supplier_stats["unassigned"] += 1
        if invoice.status == "paid":
            supplier_stats["totalCosts"] += _amount(invoice.amount_total)
        else:
            supplier_stats["pendingCosts"] += _amount(invoice.amount_total)

    return {
        "client": client_stats,
        "supplier": supplier_stats,
        "combined": {
            "total": len(client_invoices) + len(supplier_invoices),
            "totalAmount": sum(_amount(i.amount_total) for i in client_invoices)
            + sum(_amount(i.amount_total) for i in supplier_invoices),
            "netMargin": client_stats["totalRevenue"] - supplier_stats["totalCosts"],
        },
    }


def supplier_invoice_statistics(
    invoices: Sequence[SupplierInvoice],
    latest_results: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Statistics for the supplier invoice list.

    Args:
        invoices: Supplier invoices in the listing
        latest_results: Latest AIProcessingResult per supplier invoice id
        now: Reference time for the 7-day processing window
    """
    now = now or utc_now()
    total_amount = sum(_amount(i.amount_total) for i in invoices)
    by_status: Dict[str, int] = defaultdict(int)
    for invoice in invoices:
        by_status[invoice.status] += 1

    results = [latest_results[i.id] for i in invoices if i.id in latest_results]
    confidences = [r.confidence_score for r in results if r.confidence_score is not None]
    week_ago = now.timestamp() - 7 * 24 * 3600
    processed = [parse_datetime(r.processed_at) for r in results]
    recent = [at for at in processed if at is not None and at.timestamp() >= week_ago]

    return {
        "total": len(invoices),
        "totalAmount": total_amount,
        "byStatus": dict(by_status),
        "averageAmount": total_amount / len(invoices) if invoices else 0,
        "pendingAssignmentCount": by_status.get("pending-assignment", 0),
        "highConfidenceCount": sum(1 for c in confidences if c >= HIGH_CONFIDENCE_THRESHOLD),
        "processingStats": {
            "totalProcessed": len(results),
            "avgConfidence": round(sum(confidences) / len(confidences)) if confidences else 0,
            "recentProcessingCount": len(recent),
        },
    }


# --- Expenses ----------------------------------------------------------------

def expense_statistics(
    expenses: Sequence[ManualExpense],
    project_names: Mapping[str, str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()
    by_category: Dict[str, float] = defaultdict(float)
    by_project: Dict[str, float] = defaultdict(float)
    recent_cutoff = now.timestamp() - 30 * 24 * 3600
    recent_count = 0
    current_month = 0.0

    for expense in expenses:
        amount = _amount(expense.amount)
        by_category[expense.category or "Uncategorized"] += amount
        if expense.project_id:
            by_project[project_names.get(expense.project_id, expense.project_id)] += amount
        expense_date = parse_datetime(expense.expense_date)
        if expense_date is None:
            continue
        if expense_date.timestamp() >= recent_cutoff:
            recent_count += 1
        if expense_date.year == now.year and expense_date.month == now.month:
            current_month += amount

    total = sum(_amount(e.amount) for e in expenses)
    return {
        "total": len(expenses),
        "totalAmount": total,
        "totalByCategory": dict(by_category),
        "totalByProject": dict(by_project),
        "averageExpense": total / len(expenses) if expenses else 0,
        "recentExpensesCount": recent_count,
        "currentMonthAmount": current_month,
    }


def group_by(rows: Iterable[Any], attribute: str) -> Dict[Any, List[Any]]:
    """Bucket rows by one attribute, keeping insertion order."""
    grouped: Dict[Any, List[Any]] = defaultdict(list)
    for row in rows:
        grouped[getattr(row, attribute)].append(row)
    return grouped
