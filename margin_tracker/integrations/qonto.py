"""
Qonto API Client

Wrapper over the Qonto third-party REST v2 API, plus the heuristics used to
recognise supplier payments and to match counterparties to known clients.
"""
import logging
import re
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

import requests
from rapidfuzz.distance import Levenshtein

from margin_tracker.core.config import settings
from margin_tracker.core.dates import utc_now
from margin_tracker.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class QontoAPIError(UpstreamError):
    """Non-2xx answer from Qonto."""
    error = "Qonto API error"

    def __init__(self, status_code: int, reason: str):
        self.upstream_status = status_code
        super().__init__(f"Qonto API error: {status_code} {reason}")


def _page_params(current_page: Optional[int], per_page: Optional[int]) -> Dict[str, str]:
    params = {}
    if current_page:
        params["page"] = str(current_page)
    if per_page:
        params["per_page"] = str(per_page)
    return params


class QontoClient:
    """
    Qonto REST client.

    Qonto authenticates with ``Authorization: <login>:<secret_key>``.
    """

    def __init__(
        self,
        login: str,
        secret_key: str,
        base_url: str = "https://thirdparty.qonto.com/v2",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.login = login
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"{login}:{secret_key}",
            "Content-Type": "application/json",
        }

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self.session.request(
            "GET", f"{self.base_url}{path}", headers=self.headers, params=params, timeout=self.timeout
        )
        if not response.ok:
            logger.error("Qonto GET %s failed: %s %s", path, response.status_code, response.reason)
            raise QontoAPIError(response.status_code, response.reason)
        return response.json()

    def get_organization(self) -> Dict[str, Any]:
        return self._get("/organizations")["organization"]

    def get_transactions(
        self,
        iban: Optional[str] = None,
        status: Optional[List[str]] = None,
        side: Optional[str] = None,
        updated_at_from: Optional[str] = None,
        updated_at_to: Optional[str] = None,
        settled_at_from: Optional[str] = None,
        settled_at_to: Optional[str] = None,
        sort_by: Optional[str] = None,
        current_page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = _page_params(current_page, per_page)
        if status:
            params["status[]"] = ",".join(status)
        for name, value in (
            ("iban", iban),
            ("side", side),
            ("updated_at_from", updated_at_from),
            ("updated_at_to", updated_at_to),
            ("settled_at_from", settled_at_from),
            ("settled_at_to", settled_at_to),
            ("sort_by", sort_by),
        ):
            if value:
                params[name] = value
        return self._get("/transactions", params)

    def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        return self._get(f"/transactions/{transaction_id}")["transaction"]

    def get_transaction_attachments(self, transaction_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/transactions/{transaction_id}/attachments")["attachments"]

    def get_clients(self, current_page: Optional[int] = None, per_page: Optional[int] = None) -> Dict[str, Any]:
        return self._get("/clients", _page_params(current_page, per_page))

    def get_client_invoices(
        self,
        current_page: Optional[int] = None,
        per_page: Optional[int] = None,
        status: Optional[List[str]] = None,
        issue_date_from: Optional[str] = None,
        issue_date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = _page_params(current_page, per_page)
        if status:
            params["status[]"] = ",".join(status)
        if issue_date_from:
            params["issue_date_from"] = issue_date_from
        if issue_date_to:
            params["issue_date_to"] = issue_date_to
        return self._get("/client_invoices", params)

    def get_supplier_invoices(
        self,
        current_page: Optional[int] = None,
        per_page: Optional[int] = None,
        invoice_date_from: Optional[str] = None,
        invoice_date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = _page_params(current_page, per_page)
        if invoice_date_from:
            params["invoice_date_from"] = invoice_date_from
        if invoice_date_to:
            params["invoice_date_to"] = invoice_date_to
        return self._get("/supplier_invoices", params)

    def get_attachment_url(self, attachment_id: str) -> Dict[str, Optional[str]]:
        """Temporary download URL of an attachment (Qonto URLs expire after ~30 minutes)."""
        attachment = self._get(f"/attachments/{attachment_id}")["attachment"]
        expires_at = attachment.get("expires_at") or (utc_now() + timedelta(minutes=30)).isoformat()
        return {"url": attachment.get("url"), "expires_at": expires_at}

    def download(self, url: str) -> bytes:
        """Fetch a pre-signed attachment URL (no Qonto credentials attached)."""
        response = self.session.request("GET", url, timeout=self.timeout)
        if not response.ok:
            raise QontoAPIError(response.status_code, response.reason)
        return response.content

    def test_connection(self) -> Dict[str, Any]:
        try:
            organization = self.get_organization()
        except (QontoAPIError, requests.RequestException) as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "organization": organization}


def create_qonto_client(session: Optional[requests.Session] = None) -> Optional[QontoClient]:
    """Build a client from QONTO_API_KEY ("login:secret"), or None when it is unusable."""
    api_key = settings.QONTO_API_KEY
    if not api_key or ":" not in api_key:
        logger.warning('Qonto API key missing or invalid format. Expected format: "login:secret_key"')
        return None
    login, secret_key = api_key.split(":", 1)
    if not login or not secret_key:
        logger.warning("Qonto configuration incomplete. Integration disabled.")
        return None
    return QontoClient(
        login=login,
        secret_key=secret_key,
        base_url=settings.QONTO_BASE_URL,
        session=session,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


def money_value(amount: Any) -> float:
    """Read a Qonto money field, either ``{"value": "12.30", ...}`` or a bare number."""
    if isinstance(amount, dict):
        amount = amount.get("value")
    if amount in (None, ""):
        return 0.0
    return float(amount)


class TransactionCategorizer:
    """Keyword heuristics over Qonto transactions."""

    SUPPLIER_KEYWORDS = ("invoice", "facture", "bill", "payment", "supplier", "vendor")
    CLIENT_KEYWORDS = ("payment", "invoice", "facture", "client", "customer", "projet", "project")
    STRONG_KEYWORDS = ("invoice", "facture", "payment", "project", "projet")
    WEAK_KEYWORDS = ("transfer", "virement", "expense", "cost")

    @staticmethod
    def _search_text(transaction: Dict[str, Any]) -> str:
        parts = (transaction.get("label"), transaction.get("note"), transaction.get("reference"))
        return " ".join(part or "" for part in parts).lower()

    @classmethod
    def is_supplier_invoice(cls, transaction: Dict[str, Any]) -> bool:
        if transaction.get("side") != "debit":
            return False
        text = cls._search_text(transaction)
        return any(keyword in text for keyword in cls.SUPPLIER_KEYWORDS)

    @classmethod
    def is_client_payment(cls, transaction: Dict[str, Any]) -> bool:
        if transaction.get("side") != "credit":
            return False
        text = cls._search_text(transaction)
        return any(keyword in text for keyword in cls.CLIENT_KEYWORDS)

    @staticmethod
    def extract_client_name(transaction: Dict[str, Any]) -> Optional[str]:
        counterparty = transaction.get("counterparty") or {}
        if counterparty.get("name"):
            return counterparty["name"]
        text = transaction.get("label") or transaction.get("reference") or ""
        text = re.sub(r"^(payment|facture|invoice|from|to)\s+", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\s+(payment|facture|invoice)$", "", text, flags=re.IGNORECASE)
        return text.strip() or None

    @staticmethod
    def extract_supplier_name(transaction: Dict[str, Any]) -> Optional[str]:
        counterparty = transaction.get("counterparty") or {}
        if counterparty.get("name"):
            return counterparty["name"]
        text = transaction.get("label") or ""
        text = re.sub(r"^(payment to|pay|facture|invoice)\s+", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\s+(invoice|bill|payment)$", "", text, flags=re.IGNORECASE)
        return text.strip() or None

    @classmethod
    def categorization_confidence(cls, transaction: Dict[str, Any]) -> int:
        """Score 0-100 of how safely a transaction can be categorised automatically."""
        confidence = 0
        if (transaction.get("counterparty") or {}).get("name"):
            confidence += 40
        if transaction.get("category"):
            confidence += 20
        if transaction.get("reference"):
            confidence += 15

        text = cls._search_text(transaction)
        confidence += 10 * sum(1 for keyword in cls.STRONG_KEYWORDS if keyword in text)
        confidence += 5 * sum(1 for keyword in cls.WEAK_KEYWORDS if keyword in text)
        # Plain transfers are ambiguous
        if "transfer" in text or "virement" in text:
            confidence -= 20
        return max(0, min(100, confidence))


class EntityMatcher:
    SIMILARITY_THRESHOLD = 0.8

    @classmethod
    def match_client_by_name(cls, clients: Iterable[Any], name: str) -> Optional[Dict[str, Any]]:
        """
        Best active client whose name is more than 80% similar to ``name``.

        Returns:
            ``{"client_id", "confidence"}`` or None
        """
        wanted = name.lower().strip()
        best: Optional[Dict[str, Any]] = None
        for client in clients:
            if not client.is_active:
                continue
            similarity = Levenshtein.normalized_similarity(wanted, client.name.lower().strip())
            if similarity > cls.SIMILARITY_THRESHOLD and (best is None or similarity > best["confidence"]):
                best = {"client_id": client.id, "confidence": similarity}
        return best
