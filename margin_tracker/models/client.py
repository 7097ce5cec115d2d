"""
Client Model Module

Clients are billed through Qonto. A client can be the primary client of several
projects through the association table.
"""
from typing import Optional
from sqlmodel import SQLModel, Field, UniqueConstraint
import uuid

from margin_tracker.core.dates import utc_now_iso


class Client(SQLModel, table=True):
    """
    Client/company billed by the agency.

    Attributes:
        id: UUID primary key
        name: Company name (required)
        email, phone, address, country, vat_number: Contact and billing details
        currency: Default billing currency
        qonto_id: Qonto client id when synced from Qonto
        is_active: False hides the client from active listings
        last_sync_at: ISO timestamp of the last Qonto sync touching this row
    """
    __tablename__ = "clients"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    name: str = Field(nullable=False)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    vat_number: Optional[str] = None
    currency: str = "EUR"

    qonto_id: Optional[str] = Field(default=None, index=True)
    is_active: bool = True
    last_sync_at: Optional[str] = None

    created_at: Optional[str] = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)


class ClientProjectAssociation(SQLModel, table=True):
    """Links a client to a project. ``role`` is "primary" for the billed client."""
    __tablename__ = "client_project_associations"
    __table_args__ = (UniqueConstraint("client_id", "project_id"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    role: str = "primary"
    created_at: Optional[str] = Field(default_factory=utc_now_iso)
