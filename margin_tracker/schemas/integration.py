from typing import Literal, Optional
from pydantic import BaseModel


class ClickUpSyncRequest(BaseModel):
    force_full_sync: bool = False


class ClickUpPushRequest(BaseModel):
    action: Literal["sync_project", "sync_all"]
    project_id: Optional[str] = None


class QontoSyncRequest(BaseModel):
    force_full_sync: bool = False
    sync_type: Literal["all", "clients", "client_invoices", "supplier_invoices"] = "all"


class IntegrationActionRequest(BaseModel):
    integration: Literal["clickup", "qonto"]
    action: Literal["sync", "test_connection"]
