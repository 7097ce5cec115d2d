from datetime import date
from typing import Optional
from pydantic import Field, field_validator

from margin_tracker.schemas.base import CamelModel, reject_null


class ExpenseCreate(CamelModel):
    description: str = Field(min_length=1)
    amount: float
    category: str = Field(min_length=1)
    expense_date: date
    currency: str = "EUR"
    project_id: Optional[str] = None
    vat_included: bool = False
    vat_amount: Optional[float] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None


class ExpenseUpdate(CamelModel):
    id: str
    description: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    category: Optional[str] = None
    project_id: Optional[str] = None
    expense_date: Optional[date] = None
    vat_included: Optional[bool] = None
    vat_amount: Optional[float] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("description", "amount", "currency", "vat_included")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)
