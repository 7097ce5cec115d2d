from datetime import date
from typing import List, Optional
from pydantic import Field, field_validator

from margin_tracker.schemas.base import CamelModel, reject_null


class AssignmentIn(CamelModel):
    project_id: str
    amount_assigned: Optional[float] = None
    percentage: Optional[float] = None
    assignment_type: Optional[str] = None


class SupplierInvoiceCreate(CamelModel):
    supplier_name: str = Field(min_length=1)
    amount_total: float = Field(gt=0)
    invoice_date: date
    amount_net: Optional[float] = None
    amount_vat: Optional[float] = None
    currency: str = "EUR"
    description: Optional[str] = None
    pdf_url: Optional[str] = None
    qonto_id: Optional[str] = None
    qonto_transaction_id: Optional[str] = None
    attachment_id: Optional[str] = None
    status: str = "pending-assignment"
    project_assignments: Optional[List[AssignmentIn]] = None


class SupplierInvoiceUpdate(CamelModel):
    """
    Partial update. ``project_assignments`` replaces the whole assignment list
    when present, including with an empty list.
    """
    id: Optional[str] = None
    supplier_name: Optional[str] = None
    amount_total: Optional[float] = Field(default=None, gt=0)
    amount_net: Optional[float] = None
    amount_vat: Optional[float] = None
    currency: Optional[str] = None
    invoice_date: Optional[date] = None
    description: Optional[str] = None
    status: Optional[str] = None
    pdf_url: Optional[str] = None
    project_assignments: Optional[List[AssignmentIn]] = None

    @field_validator("supplier_name", "amount_total", "currency", "status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)
