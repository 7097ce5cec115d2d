"""
Tests for supplier invoices and their project assignments
"""
import pytest
from sqlmodel import select

from margin_tracker.models import (
    AIProcessingResult, InvoiceProjectAssignment, Project, SupplierInvoice,
)
from margin_tracker.schemas.supplier_invoice import AssignmentIn
from margin_tracker.services.assignments import (
    build_assignments, delete_supplier_invoice, list_assignments, replace_assignments,
)
from margin_tracker.core.errors import NotFound, ValidationError
from tests.conftest import TEST_USER_EMAIL


@pytest.fixture
def projects(add):
    return add(Project(name="Website"), Project(name="Mobile app"))


@pytest.fixture
def supplier_invoice(add):
    return add(SupplierInvoice(supplier_name="Studio Nord", amount_total=1000, invoice_date="2025-02-01"))


@pytest.mark.unit
class TestReplaceAssignments:
    """Tests for the replace-all assignment rule"""

    def test_replace_with_new_rows(self, session, projects, supplier_invoice):
        """Test that previous rows are replaced by the new list"""
        website, app = projects
        replace_assignments(session, supplier_invoice, [AssignmentIn(project_id=website.id, amount_assigned=1000)], "a@b.c")
        session.commit()

        rows = replace_assignments(session, supplier_invoice, [
            AssignmentIn(project_id=website.id, amount_assigned=600),
            AssignmentIn(project_id=app.id, amount_assigned=400, assignment_type="ai_suggested"),
        ], "a@b.c")
        session.commit()

        stored = list_assignments(session, supplier_invoice.id)
        assert len(stored) == 2
        assert sorted(a.amount_assigned for a in stored) == [400, 600]
        assert {r.percentage for r in rows} == {60, 40}
        assert {r.assignment_type for r in rows} == {"manual", "ai_suggested"}

    def test_empty_list_clears_assignments(self, session, projects, supplier_invoice):
        """Test that an empty list removes every prior assignment"""
        replace_assignments(session, supplier_invoice, [AssignmentIn(project_id=projects[0].id, amount_assigned=500)], None)
        session.commit()

        replace_assignments(session, supplier_invoice, [], None)
        session.commit()
        assert list_assignments(session, supplier_invoice.id) == []

    def test_total_above_invoice_amount_is_rejected(self, session, projects, supplier_invoice):
        """Test that assignments may not exceed the invoice total"""
        with pytest.raises(ValidationError) as exc_info:
            build_assignments(session, supplier_invoice, [
                AssignmentIn(project_id=projects[0].id, amount_assigned=700),
                AssignmentIn(project_id=projects[1].id, amount_assigned=300.5),
            ], None)
        assert exc_info.value.status_code == 400

    def test_rounding_tolerance(self, session, projects, supplier_invoice):
        """Test that a cent of rounding slack is accepted"""
        rows = build_assignments(session, supplier_invoice, [
            AssignmentIn(project_id=projects[0].id, amount_assigned=1000.005),
        ], None)
        assert rows[0].amount_assigned == 1000.005

    def test_unknown_project_is_rejected(self, session, supplier_invoice):
        """Test that assignments must point at an existing project"""
        with pytest.raises(ValidationError):
            build_assignments(session, supplier_invoice, [AssignmentIn(project_id="missing", amount_assigned=10)], None)

    def test_failed_replace_keeps_previous_rows(self, session, projects, supplier_invoice):
        """Test that an invalid replacement leaves the stored assignments alone"""
        replace_assignments(session, supplier_invoice, [AssignmentIn(project_id=projects[0].id, amount_assigned=500)], None)
        session.commit()

        with pytest.raises(ValidationError):
            replace_assignments(session, supplier_invoice, [AssignmentIn(project_id=projects[1].id, amount_assigned=5000)], None)
        session.rollback()

        stored = list_assignments(session, supplier_invoice.id)
        assert [a.project_id for a in stored] == [projects[0].id]


@pytest.mark.unit
class TestDeleteSupplierInvoice:
    """Tests for deleting a supplier invoice with dependent rows"""

    def test_dependent_rows_are_removed(self, session, add, projects, supplier_invoice):
        """Test that assignments and AI results are deleted with the invoice"""
        add(
            InvoiceProjectAssignment(supplier_invoice_id=supplier_invoice.id, project_id=projects[0].id, amount_assigned=100),
            AIProcessingResult(supplier_invoice_id=supplier_invoice.id, processing_status="completed"),
        )
        invoice_id = supplier_invoice.id

        delete_supplier_invoice(session, invoice_id)

        assert session.get(SupplierInvoice, invoice_id) is None
        assert session.exec(select(InvoiceProjectAssignment)).all() == []
        assert session.exec(select(AIProcessingResult)).all() == []

    def test_missing_invoice(self, session):
        """Test that deleting an unknown invoice raises NotFound"""
        with pytest.raises(NotFound):
            delete_supplier_invoice(session, "missing")


@pytest.mark.api
class TestSupplierInvoiceEndpoints:
    """Tests for /api/supplier-invoices"""

    def test_create_with_assignments(self, client, auth_headers, projects):
        """Test that a manual invoice is stored with its assignments"""
        response = client.post("/api/supplier-invoices", headers=auth_headers, json={
            "supplierName": "Freelance Dev",
            "amountTotal": 1200,
            "invoiceDate": "2025-03-01",
            "projectAssignments": [{"projectId": projects[0].id, "amountAssigned": 1200}],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        invoice_id = data["supplierInvoice"]["id"]

        detail = client.get(f"/api/supplier-invoices/{invoice_id}", headers=auth_headers).json()
        assignment = detail["invoice"]["assignments"][0]
        assert assignment["projectName"] == "Website"
        assert assignment["percentage"] == 100
        assert assignment["assignedBy"] == TEST_USER_EMAIL

    def test_create_requires_positive_amount(self, client, auth_headers):
        """Test that a non-positive amount is a 400"""
        response = client.post("/api/supplier-invoices", headers=auth_headers, json={
            "supplierName": "Freelance Dev", "amountTotal": 0, "invoiceDate": "2025-03-01",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_create_requires_iso_invoice_date(self, client, auth_headers):
        """Test that the invoice date must be an ISO date"""
        response = client.post("/api/supplier-invoices", headers=auth_headers, json={
            "supplierName": "Freelance Dev", "amountTotal": 100, "invoiceDate": "1st of March",
        })
        assert response.status_code == 400
        assert "invoiceDate" in response.json()["message"]

    def test_update_rejects_null_required_fields(self, client, session, auth_headers, supplier_invoice):
        """Test that supplier name and total cannot be nulled"""
        for field in ("supplierName", "amountTotal"):
            response = client.put(f"/api/supplier-invoices/{supplier_invoice.id}", headers=auth_headers,
                                  json={field: None})
            assert response.status_code == 400
        session.refresh(supplier_invoice)
        assert (supplier_invoice.supplier_name, supplier_invoice.amount_total) == ("Studio Nord", 1000)

    def test_update_exceeding_total_is_400(self, client, auth_headers, projects, supplier_invoice):
        """Test that over-assigning through the API is rejected"""
        response = client.put(f"/api/supplier-invoices/{supplier_invoice.id}", headers=auth_headers, json={
            "projectAssignments": [{"projectId": projects[0].id, "amountAssigned": 1500}],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Assignments exceed invoice amount"

    def test_update_with_empty_list_clears(self, client, session, auth_headers, add, projects, supplier_invoice):
        """Test that sending an empty projectAssignments list removes every assignment"""
        add(InvoiceProjectAssignment(supplier_invoice_id=supplier_invoice.id, project_id=projects[0].id,
                                     amount_assigned=400))
        response = client.put(f"/api/supplier-invoices/{supplier_invoice.id}", headers=auth_headers, json={
            "status": "assigned",
            "projectAssignments": [],
        })
        assert response.status_code == 200
        assert response.json()["invoice"]["status"] == "assigned"
        assert list_assignments(session, supplier_invoice.id) == []

    def test_update_without_assignments_keeps_them(self, client, session, auth_headers, add, projects,
                                                   supplier_invoice):
        """Test that omitting projectAssignments leaves assignments untouched"""
        add(InvoiceProjectAssignment(supplier_invoice_id=supplier_invoice.id, project_id=projects[0].id,
                                     amount_assigned=400))
        response = client.put(f"/api/supplier-invoices/{supplier_invoice.id}", headers=auth_headers, json={
            "description": "March retainer",
        })
        assert response.status_code == 200
        assert len(list_assignments(session, supplier_invoice.id)) == 1

    def test_body_update_requires_id(self, client, auth_headers):
        """Test that PUT on the collection needs an id in the body"""
        response = client.put("/api/supplier-invoices", headers=auth_headers, json={"description": "x"})
        assert response.status_code == 400
        assert response.json()["error"] == "Supplier invoice ID is required for updates"

    def test_delete(self, client, session, auth_headers, add, projects, supplier_invoice):
        """Test that DELETE removes the invoice and its assignments"""
        add(InvoiceProjectAssignment(supplier_invoice_id=supplier_invoice.id, project_id=projects[0].id,
                                     amount_assigned=400))
        invoice_id = supplier_invoice.id
        response = client.delete(f"/api/supplier-invoices/{invoice_id}", headers=auth_headers)
        assert response.status_code == 200
        assert client.get(f"/api/supplier-invoices/{invoice_id}", headers=auth_headers).status_code == 404

    def test_list_filters(self, client, auth_headers, add):
        """Test unassigned and high-confidence filters with AI details"""
        matched = add(SupplierInvoice(supplier_name="A", amount_total=100, status="high-confidence",
                                      invoice_date="2025-03-02"))
        add(
            SupplierInvoice(supplier_name="B", amount_total=200, status="assigned", invoice_date="2025-03-01"),
            AIProcessingResult(supplier_invoice_id=matched.id, processing_status="completed",
                               confidence_score=85, project_matches=[]),
        )

        unassigned = client.get("/api/supplier-invoices?unassignedOnly=true", headers=auth_headers).json()
        assert [i["supplier_name"] for i in unassigned["supplierInvoices"]] == ["A"]

        confident = client.get(
            "/api/supplier-invoices?highConfidenceOnly=true&includeAI=true&includeStatistics=true",
            headers=auth_headers,
        ).json()
        assert confident["total"] == 1
        assert confident["supplierInvoices"][0]["aiExtraction"]["confidence"] == 85
        assert confident["statistics"]["highConfidenceCount"] == 1
