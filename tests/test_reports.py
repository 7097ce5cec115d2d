"""
Tests for monthly reports and alerts
"""
from datetime import datetime, timezone

import pytest

from margin_tracker.models import (
    ClientInvoice, InvoiceProjectAssignment, ManualExpense, Project, SupplierInvoice,
)
from margin_tracker.services.reports import build_alerts, build_report

END = datetime(2025, 3, 20, tzinfo=timezone.utc)


@pytest.fixture
def portfolio():
    projects = [
        Project(id="p1", name="Website", status="active", client_name="Acme"),
        Project(id="p2", name="App", status="active"),
        Project(id="p3", name="Idle", status="on-hold"),
    ]
    invoices = [
        ClientInvoice(project_id="p1", amount_total=10000, status="paid", issue_date="2025-03-05"),
        ClientInvoice(project_id="p1", amount_total=5000, status="paid", issue_date="2025-02-10"),
        ClientInvoice(project_id="p2", amount_total=2000, status="paid", issue_date="2025-03-12"),
        ClientInvoice(project_id="p2", amount_total=800, status="overdue", issue_date="2025-03-01"),
    ]
    expenses = [
        ManualExpense(description="Travel", amount=1000, project_id="p1", expense_date="2025-03-08"),
        ManualExpense(description="Licences", amount=1900, project_id="p2", expense_date="2025-03-09"),
    ]
    supplier_invoices = {
        "s1": SupplierInvoice(id="s1", supplier_name="Dev shop", amount_total=3000, status="paid",
                              invoice_date="2025-02-20"),
        "s2": SupplierInvoice(id="s2", supplier_name="Agency", amount_total=700, status="assigned",
                              invoice_date="2025-03-02"),
    }
    assignments = [
        InvoiceProjectAssignment(supplier_invoice_id="s1", project_id="p1", amount_assigned=3000),
        InvoiceProjectAssignment(supplier_invoice_id="s2", project_id="p2", amount_assigned=700),
    ]
    return projects, invoices, expenses, assignments, supplier_invoices


@pytest.mark.unit
class TestBuildReport:
    """Tests for the reports payload"""

    def test_monthly_buckets(self, portfolio):
        """Test that revenue and costs land in the right month"""
        report = build_report(*portfolio, end=END, months=3)
        months = report["monthlyData"]
        assert [m["month"] for m in months] == ["Jan 2025", "Feb 2025", "Mar 2025"]

        january, february, march = months
        assert january["revenue"] == 0 and january["marginPercent"] == 0
        assert february["revenue"] == 5000
        # Paid supplier invoice dated in February
        assert february["costs"] == 3000
        assert march["revenue"] == 12000
        # Unpaid supplier invoices do not count yet
        assert march["costs"] == 2900
        assert march["invoiceCount"] == 2
        assert march["projectCount"] == 2

    def test_project_performance(self, portfolio):
        """Test per-project margins, ordering and risk status"""
        report = build_report(*portfolio, end=END, months=3)
        performance = report["projectPerformance"]
        assert [p["projectId"] for p in performance] == ["p1", "p2"]

        website, app = performance
        assert website["margin"] == 11000
        assert website["status"] == "on-track"
        assert app["marginPercent"] == pytest.approx(5.0)
        assert app["status"] == "at-risk"

    def test_insights_and_alerts(self, portfolio):
        """Test totals, collection rate and the generated alerts"""
        report = build_report(*portfolio, end=END, months=3)
        insights = report["insights"]
        assert insights["totalRevenue"] == 17000
        assert insights["totalCosts"] == 5900
        assert insights["overdueInvoices"] == 1
        assert insights["collectionRate"] == 75
        assert insights["activeProjects"] == 2

        alert_types = [a["type"] for a in insights["alerts"]]
        assert alert_types == ["low-margin", "payment-delay"]
        assert insights["alerts"][0]["count"] == 1

    def test_date_range(self, portfolio):
        """Test that the date range reports the first month by default"""
        report = build_report(*portfolio, end=END, months=6)
        assert report["dateRange"]["months"] == 6
        assert report["dateRange"]["start"].startswith("2024-10-01")
        assert len(report["monthlyData"]) == 6

    def test_empty_portfolio(self):
        """Test that a report without data has a 100% collection rate and no alerts"""
        report = build_report([], [], [], [], {}, end=END)
        assert report["projectPerformance"] == []
        assert report["insights"]["collectionRate"] == 100
        assert report["insights"]["alerts"] == []


@pytest.mark.unit
class TestAlerts:
    """Tests for report alerts"""

    def test_revenue_target_alert(self):
        """Test that beating the monthly target raises an info alert"""
        alerts = build_alerts([], [{"revenue": 120000}], overdue_invoices=0, total_revenue=120000)
        assert alerts == [{
            "type": "target-achievement",
            "title": "Target Achievement",
            "message": "Monthly revenue target exceeded by 20.0%",
            "severity": "info",
        }]

    def test_completed_projects_are_not_flagged(self):
        """Test that a low-margin completed project raises no alert"""
        performance = [{"marginPercent": 2, "status": "completed"}]
        assert build_alerts(performance, [], 0, 0) == []


@pytest.mark.api
class TestReportsEndpoint:
    """Tests for GET /api/reports"""

    def test_report_from_database(self, client, auth_headers, add):
        """Test that the endpoint aggregates project-linked rows"""
        project = add(Project(name="Website"))
        add(
            ClientInvoice(project_id=project.id, amount_total=1000, status="paid", issue_date="2025-03-01"),
            ClientInvoice(amount_total=5000, status="paid", issue_date="2025-03-01"),
        )
        response = client.get("/api/reports?months=2&endDate=2025-03-31", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert [m["month"] for m in data["monthlyData"]] == ["Feb 2025", "Mar 2025"]
        # The unlinked invoice is ignored
        assert data["insights"]["totalRevenue"] == 1000
        assert "timestamp" in data

    def test_invalid_date(self, client, auth_headers):
        """Test that an unparseable date is a 400"""
        response = client.get("/api/reports?endDate=not-a-date", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid date range"

    def test_months_out_of_range(self, client, auth_headers):
        """Test that months outside 1..36 is rejected"""
        response = client.get("/api/reports?months=0", headers=auth_headers)
        assert response.status_code == 400
