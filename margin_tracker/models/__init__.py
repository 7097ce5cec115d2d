from .project import Project, ProjectStatus
from .client import Client, ClientProjectAssociation
from .invoice import (
    ClientInvoice, ClientInvoiceLineItem, ClientInvoiceStatus,
    SupplierInvoice, SupplierInvoiceStatus, UNASSIGNED_STATUSES,
    InvoiceProjectAssignment, AssignmentType,
    AIProcessingResult,
)
from .expense import ManualExpense
from .sync_log import ClickUpSyncLog, QontoSyncLog, SyncStatus
from .user import UserProfile, UserRole

__all__ = [
    "Project", "ProjectStatus",
    "Client", "ClientProjectAssociation",
    "ClientInvoice", "ClientInvoiceLineItem", "ClientInvoiceStatus",
    "SupplierInvoice", "SupplierInvoiceStatus", "UNASSIGNED_STATUSES",
    "InvoiceProjectAssignment", "AssignmentType",
    "AIProcessingResult",
    "ManualExpense",
    "ClickUpSyncLog", "QontoSyncLog", "SyncStatus",
    "UserProfile", "UserRole",
]
