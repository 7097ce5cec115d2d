"""
Tests for project, portfolio and listing aggregation
"""
from datetime import datetime, timezone

import pytest

from margin_tracker.core.dates import parse_datetime
from margin_tracker.models import (
    Client, ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project, SupplierInvoice,
)
from margin_tracker.services.financials import (
    calculate_project_financials,
    client_metrics,
    client_statistics,
    convert_amount,
    expense_statistics,
    summarize_portfolio,
    supplier_assignment_counts,
    unified_invoice_statistics,
)

NOW = datetime(2025, 3, 15, tzinfo=timezone.utc)


def invoice(amount, status, **kwargs):
    return ClientInvoice(amount_total=amount, status=status, **kwargs)


@pytest.mark.unit
class TestProjectFinancials:
    """Tests for revenue, cost and margin of one project"""

    def test_worked_example(self):
        """Test that 1000 paid revenue with 200 + 300 costs gives a 50% margin"""
        result = calculate_project_financials(
            [invoice(1000, "paid")],
            [ManualExpense(description="Travel", amount=200)],
            [InvoiceProjectAssignment(supplier_invoice_id="s1", project_id="p1", amount_assigned=300)],
        )
        assert result["revenue"]["paid"] == 1000
        assert result["costs"] == {"total": 500, "manual": 200, "supplier": 300}
        assert result["margin"] == {"amount": 500, "percentage": 50}

    def test_paid_revenue_sums_only_paid_invoices(self):
        """Test that revenue.paid only counts invoices with status paid"""
        result = calculate_project_financials(
            [invoice(100, "paid"), invoice(250.5, "paid"), invoice(400, "pending"),
             invoice(50, "overdue"), invoice(20, "draft"), invoice(999, "cancelled")],
            [], [],
        )
        revenue = result["revenue"]
        assert revenue["paid"] == pytest.approx(350.5)
        assert revenue["pending"] == 400
        assert revenue["overdue"] == 50
        assert revenue["draft"] == 20
        assert revenue["total"] == pytest.approx(1819.5)

    def test_zero_paid_revenue_gives_zero_percentage(self):
        """Test that the margin percentage is 0 when nothing has been paid"""
        result = calculate_project_financials(
            [invoice(500, "pending")],
            [ManualExpense(description="Hosting", amount=120)],
            [],
        )
        assert result["margin"]["amount"] == -120
        assert result["margin"]["percentage"] == 0

    def test_no_rows_at_all(self):
        """Test that a project without rows has all-zero figures"""
        result = calculate_project_financials([], [], [])
        assert result["revenue"]["total"] == 0
        assert result["costs"]["total"] == 0
        assert result["margin"] == {"amount": 0, "percentage": 0}

    def test_missing_amounts_count_as_zero(self):
        """Test that null assigned amounts do not break the sum"""
        result = calculate_project_financials(
            [invoice(100, "paid")],
            [],
            [InvoiceProjectAssignment(supplier_invoice_id="s1", project_id="p1", amount_assigned=None)],
        )
        assert result["costs"]["supplier"] == 0
        assert result["margin"]["percentage"] == 100


@pytest.mark.unit
class TestPortfolio:
    """Tests for the FX-normalised portfolio summary"""

    def test_usd_projects_are_converted(self):
        """Test that a USD project is converted before being added to EUR ones"""
        eur = Project(id="eur", name="EUR project", currency="EUR")
        usd = Project(id="usd", name="USD project", currency="USD")
        financials = {
            "eur": calculate_project_financials([invoice(1000, "paid")], [], []),
            "usd": calculate_project_financials(
                [invoice(1000, "paid")], [ManualExpense(description="x", amount=200)], []
            ),
        }
        summary = summarize_portfolio([eur, usd], financials, {"EUR": 1.0, "USD": 0.85})
        assert summary["totalRevenue"] == pytest.approx(1850)
        assert summary["totalCosts"] == pytest.approx(170)
        assert summary["totalMargin"] == pytest.approx(1680)
        assert summary["marginPercentage"] == pytest.approx(1680 / 1850 * 100)

    def test_unknown_currency_counts_at_par(self):
        """Test that a currency missing from the rate table is not scaled"""
        assert convert_amount(100, "CHF", {"EUR": 1.0}) == 100

    def test_empty_portfolio(self):
        """Test that an empty portfolio has a zero margin percentage"""
        summary = summarize_portfolio([], {}, {"EUR": 1.0})
        assert summary["marginPercentage"] == 0


@pytest.mark.unit
class TestSupplierAssignmentCounts:
    """Tests for fully/partially/unassigned classification"""

    def test_classification(self):
        """Test that assignment totals are compared to the invoice total"""
        invoices = [
            SupplierInvoice(id="full", supplier_name="A", amount_total=100),
            SupplierInvoice(id="part", supplier_name="B", amount_total=100),
            SupplierInvoice(id="none", supplier_name="C", amount_total=100),
        ]
        assignments = [
            InvoiceProjectAssignment(supplier_invoice_id="full", project_id="p1", amount_assigned=60),
            InvoiceProjectAssignment(supplier_invoice_id="full", project_id="p2", amount_assigned=40),
            InvoiceProjectAssignment(supplier_invoice_id="part", project_id="p1", amount_assigned=30),
        ]
        counts = supplier_assignment_counts(invoices, assignments)
        assert counts == {"total": 3, "fullyAssigned": 1, "partiallyAssigned": 1, "unassigned": 1}

    def test_counts_only_the_given_assignments(self):
        """Test that a split invoice is partial when only one project's rows are passed"""
        invoices = [SupplierInvoice(id="split", supplier_name="Studio", amount_total=1000)]
        project_rows = [InvoiceProjectAssignment(supplier_invoice_id="split", project_id="p1", amount_assigned=600)]
        all_rows = project_rows + [
            InvoiceProjectAssignment(supplier_invoice_id="split", project_id="p2", amount_assigned=400),
        ]
        assert supplier_assignment_counts(invoices, project_rows)["partiallyAssigned"] == 1
        assert supplier_assignment_counts(invoices, all_rows)["fullyAssigned"] == 1


@pytest.mark.unit
class TestClientMetrics:
    """Tests for the derived client status and revenue"""

    def test_client_with_active_project_is_active(self):
        """Test that an active project makes the client active"""
        client = Client(id="c1", name="Acme", is_active=True, qonto_id="q1")
        metrics = client_metrics(
            client,
            [invoice(500, "paid", issue_date="2025-03-01"), invoice(200, "pending", issue_date="2025-03-02")],
            [Project(name="Site", status="active")],
            now=NOW,
        )
        assert metrics["status"] == "active"
        assert metrics["totalRevenue"] == 500
        assert metrics["recentActivity"] == "Recent"
        assert metrics["lastInvoiceDate"] == "2025-03-02"
        assert metrics["qontoStatus"] == "connected"

    def test_client_with_stale_projects_is_on_hold(self):
        """Test that only inactive projects and old invoices give on-hold"""
        client = Client(id="c1", name="Acme", is_active=True)
        metrics = client_metrics(
            client,
            [invoice(500, "paid", issue_date="2024-06-01")],
            [Project(name="Site", status="completed")],
            now=NOW,
        )
        assert metrics["status"] == "on-hold"
        assert metrics["recentActivity"] == "No recent activity"

    def test_disabled_client_is_inactive(self):
        """Test that is_active=False wins over project activity"""
        client = Client(id="c1", name="Acme", is_active=False)
        metrics = client_metrics(client, [], [Project(name="Site", status="active")], now=NOW)
        assert metrics["status"] == "inactive"

    def test_statistics(self):
        """Test aggregate client statistics"""
        metrics = [
            {"status": "active", "totalRevenue": 300, "totalProjects": 2, "recentActivity": "Recent"},
            {"status": "on-hold", "totalRevenue": 100, "totalProjects": 1, "recentActivity": "No recent activity"},
        ]
        stats = client_statistics(metrics)
        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["onHold"] == 1
        assert stats["averageRevenuePerClient"] == 200
        assert stats["recentActivityCount"] == 1


@pytest.mark.unit
class TestListingStatistics:
    """Tests for invoice and expense listing statistics"""

    def test_unified_invoice_statistics(self):
        """Test client, supplier and combined invoice statistics"""
        clients = [invoice(1000, "paid"), invoice(300, "pending"), invoice(200, "overdue")]
        suppliers = [
            SupplierInvoice(supplier_name="A", amount_total=400, status="paid"),
            SupplierInvoice(supplier_name="B", amount_total=150, status="pending-assignment"),
            SupplierInvoice(supplier_name="C", amount_total=50, status="assigned"),
        ]
        stats = unified_invoice_statistics(clients, suppliers)
        assert stats["client"]["totalRevenue"] == 1000
        assert stats["client"]["pendingRevenue"] == 500
        assert stats["supplier"]["assigned"] == 1
        assert stats["supplier"]["unassigned"] == 1
        assert stats["supplier"]["totalCosts"] == 400
        assert stats["supplier"]["pendingCosts"] == 200
        assert stats["combined"]["total"] == 6
        assert stats["combined"]["netMargin"] == 600

    def test_expense_statistics(self):
        """Test totals by category, by project and for the current month"""
        expenses = [
            ManualExpense(description="Train", amount=100, category="Travel", project_id="p1",
                          expense_date="2025-03-10"),
            ManualExpense(description="Figma", amount=50, category="Software", expense_date="2025-01-05"),
            ManualExpense(description="Misc", amount=25, expense_date="2025-03-01"),
        ]
        stats = expense_statistics(expenses, {"p1": "Website"}, now=NOW)
        assert stats["totalAmount"] == 175
        assert stats["totalByCategory"] == {"Travel": 100, "Software": 50, "Uncategorized": 25}
        assert stats["totalByProject"] == {"Website": 100}
        assert stats["recentExpensesCount"] == 2
        assert stats["currentMonthAmount"] == 125


@pytest.mark.unit
class TestParseDatetime:
    """Tests for reading stored dates"""

    @pytest.mark.parametrize("value, expected", [
        ("2025-03-01", datetime(2025, 3, 1, tzinfo=timezone.utc)),
        ("2025-03-01T10:30:00Z", datetime(2025, 3, 1, 10, 30, tzinfo=timezone.utc)),
        ("2025-03-01 garbage", datetime(2025, 3, 1, tzinfo=timezone.utc)),
        ("03/01/2025", None),
        ("yesterday", None),
        ("", None),
        (None, None),
    ])
    def test_parse(self, value, expected):
        """Test that ISO text is parsed and anything else is None"""
        assert parse_datetime(value) == expected

    def test_client_metrics_ignore_unreadable_dates(self):
        """Test that a non-ISO issue date does not count as the last invoice"""
        client = Client(id="c1", name="Acme", is_active=True)
        invoices = [ClientInvoice(amount_total=10, status="paid", issue_date="03/01/2025")]
        metrics = client_metrics(client, invoices, [], now=datetime(2025, 3, 15, tzinfo=timezone.utc))
        assert metrics["lastInvoiceDate"] is None
        assert metrics["totalRevenue"] == 10
