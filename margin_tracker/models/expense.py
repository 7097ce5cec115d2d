from typing import Optional
from sqlmodel import SQLModel, Field
import uuid

from margin_tracker.core.dates import utc_now_iso


class ManualExpense(SQLModel, table=True):
    """
    Cost entered by hand (travel, software, freelancers paid outside Qonto...).

    When ``vat_included`` is set, ``net_amount`` is ``amount - vat_amount``.
    """
    __tablename__ = "manual_expenses"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    description: str = Field(nullable=False)
    amount: float = 0.0
    currency: str = "EUR"
    category: Optional[str] = None
    project_id: Optional[str] = Field(default=None, foreign_key="projects.id", index=True)
    expense_date: Optional[str] = None
    added_by: Optional[str] = None

    vat_included: bool = False
    vat_amount: Optional[float] = None
    net_amount: Optional[float] = None

    receipt_url: Optional[str] = None
    notes: Optional[str] = None

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)
