from datetime import date
from typing import Literal, Optional

from margin_tracker.schemas.base import CamelModel


class InvoiceCreate(CamelModel):
    """Manual invoice entry, client or supplier side."""
    type: Literal["client", "supplier"]
    amount: float
    net_amount: Optional[float] = None
    vat_amount: Optional[float] = None
    currency: str = "EUR"
    status: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    description: Optional[str] = None
    document_url: Optional[str] = None

    # client side
    invoice_number: Optional[str] = None
    client_id: Optional[str] = None
    project_id: Optional[str] = None

    # supplier side
    supplier_name: Optional[str] = None
