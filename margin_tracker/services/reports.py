"""
Monthly margin reports.

Only invoices and expenses attached to a project contribute. Revenue counts
paid client invoices by issue date; costs count manual expenses by expense
date plus assignments of paid supplier invoices by invoice date.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from margin_tracker.core.dates import add_months, month_label, parse_datetime
from margin_tracker.models import (
    ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project, SupplierInvoice,
)
from margin_tracker.services.financials import margin_percentage

LOW_MARGIN_THRESHOLD = 15
MONTHLY_REVENUE_TARGET = 100000
# Fixed split used to break total costs down by nature
COST_BREAKDOWN = {"personnel": 0.75, "infrastructure": 0.15, "externalServices": 0.08, "other": 0.02}


def _day(value: Optional[str]) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def _in_month(value: Optional[str], month_start: datetime) -> bool:
    day = _day(value)
    return bool(day and day.year == month_start.year and day.month == month_start.month)


def monthly_data(
    months: List[datetime],
    invoices: Sequence[ClientInvoice],
    expenses: Sequence[ManualExpense],
    assignments: Sequence[InvoiceProjectAssignment],
    supplier_invoices: Mapping[str, SupplierInvoice],
) -> List[Dict[str, Any]]:
    rows = []
    for month_start in months:
        revenue = 0.0
        costs = 0.0
        invoice_count = 0
        projects_in_month = set()
        for invoice in invoices:
            if invoice.status == "paid" and _in_month(invoice.issue_date, month_start):
                revenue += invoice.amount_total or 0
                invoice_count += 1
                projects_in_month.add(invoice.project_id)
        for expense in expenses:
            if _in_month(expense.expense_date, month_start):
                costs += expense.amount or 0
        for assignment in assignments:
            supplier_invoice = supplier_invoices.get(assignment.supplier_invoice_id)
            if (supplier_invoice is not None and supplier_invoice.status == "paid"
                    and _in_month(supplier_invoice.invoice_date, month_start)):
                costs += assignment.amount_assigned or 0
        margin = revenue - costs
        rows.append({
            "month": month_label(month_start),
            "revenue": revenue,
            "costs": costs,
            "margin": margin,
            "marginPercent": margin_percentage(margin, revenue),
            "invoiceCount": invoice_count,
            "projectCount": len(projects_in_month),
        })
    return rows


def project_performance(
    projects: Sequence[Project],
    invoices: Sequence[ClientInvoice],
    expenses: Sequence[ManualExpense],
    assignments: Sequence[InvoiceProjectAssignment],
    supplier_invoices: Mapping[str, SupplierInvoice],
) -> List[Dict[str, Any]]:
    """Per-project margin over all time, for projects with any revenue or cost."""
    performance = []
    for project in projects:
        revenue = sum(i.amount_total or 0 for i in invoices
                      if i.project_id == project.id and i.status == "paid")
        manual = sum(e.amount or 0 for e in expenses if e.project_id == project.id)
        supplier = sum(
            a.amount_assigned or 0 for a in assignments
            if a.project_id == project.id
            and getattr(supplier_invoices.get(a.supplier_invoice_id), "status", None) == "paid"
        )
        costs = manual + supplier
        if revenue <= 0 and costs <= 0:
            continue
        margin = revenue - costs
        percent = margin_percentage(margin, revenue)
        if project.status == "completed":
            status = "completed"
        elif percent < LOW_MARGIN_THRESHOLD:
            status = "at-risk"
        else:
            status = "on-track"
        performance.append({
            "projectId": project.id,
            "projectName": project.name,
            "margin": margin,
            "marginPercent": percent,
            "status": status,
            "revenue": revenue,
            "costs": costs,
            "clientName": project.client_name,
        })
    performance.sort(key=lambda row: row["marginPercent"], reverse=True)
    return performance


def build_alerts(performance: List[Dict[str, Any]], monthly: List[Dict[str, Any]],
                 overdue_invoices: int, total_revenue: float) -> List[Dict[str, Any]]:
    alerts = []
    low_margin = [p for p in performance
                  if p["marginPercent"] < LOW_MARGIN_THRESHOLD and p["status"] != "completed"]
    if low_margin:
        alerts.append({
            "type": "low-margin",
            "title": "Low Margin Alert",
            "message": f"{len(low_margin)} projects below {LOW_MARGIN_THRESHOLD}% margin threshold",
            "severity": "error",
            "count": len(low_margin),
        })
    if overdue_invoices > 0:
        # Rough estimate of the outstanding amount
        overdue_amount = total_revenue * 0.1
        alerts.append({
            "type": "payment-delay",
            "title": "Payment Delays",
            "message": f"€{overdue_amount:,.0f} in overdue invoices",
            "severity": "warning",
            "count": overdue_invoices,
            "amount": overdue_amount,
        })
    latest = monthly[-1] if monthly else None
    if latest and latest["revenue"] > MONTHLY_REVENUE_TARGET:
        excess = (latest["revenue"] - MONTHLY_REVENUE_TARGET) / MONTHLY_REVENUE_TARGET * 100
        alerts.append({
            "type": "target-achievement",
            "title": "Target Achievement",
            "message": f"Monthly revenue target exceeded by {excess:.1f}%",
            "severity": "info",
        })
    return alerts


def build_report(
    projects: Sequence[Project],
    invoices: Sequence[ClientInvoice],
    expenses: Sequence[ManualExpense],
    assignments: Sequence[InvoiceProjectAssignment],
    supplier_invoices: Mapping[str, SupplierInvoice],
    end: datetime,
    months: int = 6,
    start: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Assemble the reports payload.

    Args:
        projects: All projects
        invoices: Client invoices attached to a project
        expenses: Manual expenses attached to a project
        assignments: All supplier invoice assignments
        supplier_invoices: Supplier invoices by id
        end: Last day covered; the last month reported is the month of ``end``
        months: Number of months reported, ending with the month of ``end``
        start: Reported start of the range (defaults to the first reported month)
    """
    month_starts = [add_months(end, -offset) for offset in range(months - 1, -1, -1)]
    start = start or (month_starts[0] if month_starts else end)

    monthly = monthly_data(month_starts, invoices, expenses, assignments, supplier_invoices)
    performance = project_performance(projects, invoices, expenses, assignments, supplier_invoices)

    total_revenue = sum(m["revenue"] for m in monthly)
    total_costs = sum(m["costs"] for m in monthly)
    total_margin = total_revenue - total_costs

    paid = sum(1 for i in invoices if i.status == "paid")
    pending = sum(1 for i in invoices if i.status == "pending")
    overdue = sum(1 for i in invoices if i.status == "overdue")

    insights = {
        "totalRevenue": total_revenue,
        "totalCosts": total_costs,
        "totalMargin": total_margin,
        "averageMargin": margin_percentage(total_margin, total_revenue),
        "activeProjects": sum(1 for p in projects if p.status == "active"),
        "completedProjects": sum(1 for p in projects if p.status == "completed"),
        "overdueInvoices": overdue,
        "pendingInvoices": pending,
        "collectionRate": paid / len(invoices) * 100 if invoices else 100,
        "costBreakdown": {name: total_costs * share for name, share in COST_BREAKDOWN.items()},
        "alerts": build_alerts(performance, monthly, overdue, total_revenue),
    }
    return {
        "monthlyData": monthly,
        "projectPerformance": performance[:10],
        "insights": insights,
        "dateRange": {"start": start.isoformat(), "end": end.isoformat(), "months": months},
    }
