"""
Tests for the ClickUp and Qonto API clients and their helpers
"""
import pytest
import requests

from margin_tracker.integrations.clickup import (
    ClickUpAPIError, ClickUpClient, extract_client_from_folder_name, map_clickup_status,
)
from margin_tracker.integrations.qonto import (
    EntityMatcher, QontoAPIError, QontoClient, TransactionCategorizer, money_value,
)
from margin_tracker.models import Client
from tests.conftest import FakeResponse, FakeSession


@pytest.mark.unit
class TestFolderNameParsing:
    """Tests for client extraction from ClickUp folder names"""

    @pytest.mark.parametrize("folder_name, expected", [
        ("Acme - Website Redesign", "Acme"),
        ("[Globex] Mobile App", "Globex"),
        ("Brand Refresh for Initech", "Initech"),
        ("Umbrella Intranet", "Umbrella"),
        ("Internal", None),
    ])
    def test_extraction(self, folder_name, expected):
        """Test each recognised naming pattern"""
        assert extract_client_from_folder_name(folder_name) == expected

    def test_status_mapping(self):
        """Test ClickUp status mapping with the active fallback"""
        assert map_clickup_status("In Progress") == "active"
        assert map_clickup_status("closed") == "completed"
        assert map_clickup_status("blocked") == "on-hold"
        assert map_clickup_status("cancelled") == "archived"
        assert map_clickup_status("whatever") == "active"


@pytest.mark.unit
class TestClickUpClient:
    """Tests for ClickUp HTTP calls"""

    def make_client(self, routes):
        session = FakeSession(routes)
        return ClickUpClient("pk_token", "list-1", "space-9", session=session, timeout=5), session

    def test_get_folders_sends_auth_and_params(self):
        """Test the folder listing request"""
        client, session = self.make_client({
            ("GET", "/space/space-9/folder"): FakeResponse(200, {"folders": [{"id": "1", "name": "A"}]}),
        })
        assert client.get_folders(archived=True)["folders"][0]["name"] == "A"
        call = session.calls[0]
        assert call["url"] == "https://api.clickup.com/api/v2/space/space-9/folder"
        assert call["headers"]["Authorization"] == "pk_token"
        assert call["params"] == {"archived": "true"}
        assert call["timeout"] == 5

    def test_error_status_raises(self):
        """Test that a non-2xx answer raises with the upstream status"""
        client, _ = self.make_client({
            ("POST", "/list/list-1/task"): FakeResponse(401, {"err": "Token invalid"}, reason="Unauthorized"),
        })
        with pytest.raises(ClickUpAPIError) as exc_info:
            client.create_task({"name": "x"})
        assert exc_info.value.upstream_status == 401
        assert "401 Unauthorized" in str(exc_info.value)

    def test_test_connection(self):
        """Test that connection checks report instead of raising"""
        client, _ = self.make_client({("GET", "/user"): FakeResponse(200, {"user": {"id": 7}})})
        assert client.test_connection() == {"success": True, "user": {"id": 7}}

        failing, _ = self.make_client({("GET", "/user"): FakeResponse(500, reason="Server Error")})
        assert failing.test_connection() == {"success": False, "error": "API connection failed: 500"}

    def test_network_error_in_connection_check(self):
        """Test that transport errors are reported too"""
        def boom(**kwargs):
            raise requests.ConnectionError("connection refused")

        client, _ = self.make_client({("GET", "/user"): boom})
        result = client.test_connection()
        assert result["success"] is False
        assert "connection refused" in result["error"]


@pytest.mark.unit
class TestQontoClient:
    """Tests for Qonto HTTP calls"""

    def test_credentials_and_pagination_params(self):
        """Test the login:secret header and page parameters"""
        session = FakeSession({("GET", "/clients"): FakeResponse(200, {"clients": [], "meta": {}})})
        client = QontoClient("acme-1234", "s3cr3t", session=session)
        client.get_clients(current_page=2, per_page=100)
        call = session.calls[0]
        assert call["headers"]["Authorization"] == "acme-1234:s3cr3t"
        assert call["params"] == {"page": "2", "per_page": "100"}

    def test_attachment_url_and_download(self):
        """Test resolving then downloading an attachment"""
        session = FakeSession({
            ("GET", "/attachments/att-1"): FakeResponse(200, {"attachment": {
                "url": "https://files.example/att-1.pdf", "expires_at": "2025-03-01T10:30:00Z",
            }}),
            ("GET", "att-1.pdf"): FakeResponse(200, content=b"%PDF-1.7"),
        })
        client = QontoClient("acme-1234", "s3cr3t", session=session)
        attachment = client.get_attachment_url("att-1")
        assert attachment == {"url": "https://files.example/att-1.pdf", "expires_at": "2025-03-01T10:30:00Z"}
        assert client.download(attachment["url"]) == b"%PDF-1.7"
        # Pre-signed URLs are fetched without credentials
        assert "headers" not in session.calls[1]

    def test_connection_failure(self):
        """Test that a failed organization lookup is reported"""
        session = FakeSession({("GET", "/organizations"): FakeResponse(403, reason="Forbidden")})
        client = QontoClient("acme-1234", "bad", session=session)
        result = client.test_connection()
        assert result["success"] is False
        assert "403" in result["error"]

    def test_api_error_carries_status(self):
        """Test QontoAPIError on a missing resource"""
        client = QontoClient("acme-1234", "s3cr3t", session=FakeSession())
        with pytest.raises(QontoAPIError) as exc_info:
            client.get_transaction("tx-1")
        assert exc_info.value.upstream_status == 404

    def test_money_value(self):
        """Test both shapes of Qonto money fields"""
        assert money_value({"value": "12.30", "currency": "EUR"}) == 12.3
        assert money_value(5) == 5.0
        assert money_value(None) == 0.0


@pytest.mark.unit
class TestTransactionCategorizer:
    """Tests for transaction keyword heuristics"""

    def test_supplier_and_client_detection(self):
        """Test side and keyword checks"""
        debit = {"side": "debit", "label": "Facture Studio Nord"}
        credit = {"side": "credit", "label": "Payment Acme project"}
        assert TransactionCategorizer.is_supplier_invoice(debit)
        assert not TransactionCategorizer.is_client_payment(debit)
        assert TransactionCategorizer.is_client_payment(credit)

    def test_name_extraction(self):
        """Test counterparty names and label cleanup"""
        assert TransactionCategorizer.extract_client_name({"counterparty": {"name": "Acme"}}) == "Acme"
        assert TransactionCategorizer.extract_client_name({"label": "Payment Globex"}) == "Globex"
        assert TransactionCategorizer.extract_supplier_name({"label": "Invoice Studio Nord bill"}) == "Studio Nord"

    def test_confidence(self):
        """Test the categorisation score and its bounds"""
        transaction = {
            "counterparty": {"name": "Acme"},
            "category": "services",
            "reference": "INV-42",
            "label": "Invoice project",
        }
        # 40 + 20 + 15 + 2 strong keywords
        assert TransactionCategorizer.categorization_confidence(transaction) == 95
        assert TransactionCategorizer.categorization_confidence({"label": "virement"}) == 0


@pytest.mark.unit
class TestEntityMatcher:
    """Tests for fuzzy client matching"""

    def test_similarity_is_normalised_edit_distance(self):
        """Test that the confidence is one minus edit distance over the longer name"""
        clients = [Client(id="1", name="Acme Studio", is_active=True)]
        exact = EntityMatcher.match_client_by_name(clients, "  acme studio ")
        assert exact == {"client_id": "1", "confidence": 1.0}
        # One substitution over 11 characters
        close = EntityMatcher.match_client_by_name(clients, "Acne Studio")
        assert close["confidence"] == pytest.approx(10 / 11)

    def test_four_letter_typo_stays_below_threshold(self):
        """Test that one edit in four characters (0.75) is not a match"""
        clients = [Client(id="1", name="Acme", is_active=True)]
        assert EntityMatcher.match_client_by_name(clients, "acne") is None

    def test_best_active_match(self):
        """Test that the closest active client above 80% wins"""
        clients = [
            Client(id="1", name="Acme Corporation", is_active=True),
            Client(id="2", name="Acme Corporations", is_active=False),
            Client(id="3", name="Globex", is_active=True),
        ]
        match = EntityMatcher.match_client_by_name(clients, "ACME Corporatio")
        assert match["client_id"] == "1"
        assert match["confidence"] > 0.8
        assert EntityMatcher.match_client_by_name(clients, "Initech") is None
