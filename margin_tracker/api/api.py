from fastapi import APIRouter
from margin_tracker.api.endpoints import (
    auth, health, projects, clients, invoices, supplier_invoices,
    expenses, reports, dashboard, integrations,
)

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# Resource endpoints
api_router.include_router(projects.router, prefix="/projects", tags=["projects"])
api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(supplier_invoices.router, prefix="/supplier-invoices", tags=["supplier-invoices"])
api_router.include_router(expenses.router, prefix="/expenses", tags=["expenses"])

# Reporting
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])

# Vendor integrations
api_router.include_router(integrations.router, prefix="/integrations", tags=["integrations"])
