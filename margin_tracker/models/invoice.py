"""
Invoice Models Module

This module defines the invoice side of the margin computation:

1. ClientInvoice / ClientInvoiceLineItem: revenue, usually synced from Qonto
2. SupplierInvoice: costs, synced from Qonto or entered manually
3. InvoiceProjectAssignment: the share of a supplier invoice attributed to a project
4. AIProcessingResult: vision OCR output proposing project matches for a supplier invoice
"""
from enum import Enum
from typing import Any, List, Optional
from sqlmodel import SQLModel, Field, JSON, Column
import uuid

from margin_tracker.core.dates import utc_now_iso


class ClientInvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class SupplierInvoiceStatus(str, Enum):
    PENDING_ASSIGNMENT = "pending-assignment"
    HIGH_CONFIDENCE = "high-confidence"
    MEDIUM_CONFIDENCE = "medium-confidence"
    LOW_CONFIDENCE = "low-confidence"
    NO_MATCH = "no-match"
    ASSIGNED = "assigned"
    PAID = "paid"


# Statuses meaning "still waiting for someone to attribute this cost"
UNASSIGNED_STATUSES = (
    SupplierInvoiceStatus.PENDING_ASSIGNMENT.value,
    SupplierInvoiceStatus.LOW_CONFIDENCE.value,
    SupplierInvoiceStatus.NO_MATCH.value,
    SupplierInvoiceStatus.HIGH_CONFIDENCE.value,
    SupplierInvoiceStatus.MEDIUM_CONFIDENCE.value,
)


class AssignmentType(str, Enum):
    MANUAL = "manual"
    AI_SUGGESTED = "ai_suggested"
    AI_AUTO_ASSIGNED = "ai_auto_assigned"


class ClientInvoice(SQLModel, table=True):
    """
    Invoice issued to a client.

    Amounts are stored as decimals in the invoice currency. ``amount_net`` is
    ``amount_total - amount_vat`` for invoices imported from Qonto.
    """
    __tablename__ = "client_invoices"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    invoice_number: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = Field(default=None, foreign_key="projects.id", index=True)
    client_id: Optional[str] = Field(default=None, foreign_key="clients.id", index=True)

    amount_total: float = 0.0
    amount_net: Optional[float] = None
    amount_vat: Optional[float] = None
    currency: str = "EUR"

    status: str = Field(default=ClientInvoiceStatus.DRAFT.value)
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    paid_date: Optional[str] = None

    qonto_id: Optional[str] = Field(default=None, index=True)
    qonto_transaction_id: Optional[str] = None
    attachment_id: Optional[str] = None
    pdf_url: Optional[str] = None
    is_auto_detected: bool = False

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)


class ClientInvoiceLineItem(SQLModel, table=True):
    __tablename__ = "client_invoice_line_items"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    invoice_id: str = Field(foreign_key="client_invoices.id", index=True)
    qonto_line_item_id: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 1.0
    unit_price: float = 0.0
    total_amount: float = 0.0
    vat_rate: float = 0.0
    vat_amount: float = 0.0
    created_at: Optional[str] = Field(default_factory=utc_now_iso)


class SupplierInvoice(SQLModel, table=True):
    """
    Invoice received from a supplier.

    The status tracks the assignment workflow: it starts as "pending-assignment",
    moves to a confidence status once vision processing has run, and ends as
    "assigned" (or "paid" once settled).
    """
    __tablename__ = "supplier_invoices"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    supplier_name: str = Field(nullable=False)
    supplier_iban: Optional[str] = None
    description: Optional[str] = None

    amount_total: float = 0.0
    amount_net: Optional[float] = None
    amount_vat: Optional[float] = None
    currency: str = "EUR"
    invoice_date: Optional[str] = None

    status: str = Field(default=SupplierInvoiceStatus.PENDING_ASSIGNMENT.value)

    qonto_id: Optional[str] = Field(default=None, index=True)
    qonto_transaction_id: Optional[str] = None
    attachment_id: Optional[str] = None
    pdf_url: Optional[str] = None

    # Vision processing bookkeeping
    is_processed: bool = False
    processing_date: Optional[str] = None

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)


class InvoiceProjectAssignment(SQLModel, table=True):
    """Attributes ``amount_assigned`` of a supplier invoice to a project."""
    __tablename__ = "invoice_project_assignments"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    supplier_invoice_id: str = Field(foreign_key="supplier_invoices.id", index=True)
    project_id: str = Field(foreign_key="projects.id", index=True)

    amount_assigned: Optional[float] = None
    percentage: Optional[float] = None
    assignment_type: str = Field(default=AssignmentType.MANUAL.value)
    assigned_by: Optional[str] = None
    assigned_at: Optional[str] = Field(default_factory=utc_now_iso)


class AIProcessingResult(SQLModel, table=True):
    """
    Output of one vision run over a supplier invoice PDF.

    ``project_matches`` is a JSON list of ``{projectId, projectName, confidence, reasoning}``.
    """
    __tablename__ = "ai_processing_results"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    supplier_invoice_id: str = Field(foreign_key="supplier_invoices.id", index=True)

    processing_type: str = "vision_project_matching"
    processing_status: str = "processing"  # "processing", "completed" or "failed"
    confidence_score: Optional[float] = None
    project_matches: List[Any] = Field(default_factory=list, sa_column=Column(JSON))
    extracted_text: Optional[str] = None
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None

    processed_at: Optional[str] = Field(default_factory=utc_now_iso)
