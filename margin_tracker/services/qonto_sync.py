"""
Qonto synchronisation.

Imports clients, client invoices (with line items) and supplier invoices from
Qonto. Every entity is upserted by its Qonto id, one commit per item.
"""
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlmodel import Session, select

from margin_tracker.core.dates import utc_now_iso
from margin_tracker.integrations.qonto import EntityMatcher, QontoClient, money_value
from margin_tracker.models import (
    Client, ClientInvoice, ClientInvoiceLineItem, Project, QontoSyncLog, SupplierInvoice,
)
from margin_tracker.services.sync_runs import SyncFailed, SyncRun

logger = logging.getLogger(__name__)

PER_PAGE = 100

# Qonto invoice states that still expect a payment
_CLIENT_STATUS_MAP = {
    "sent": "pending",
    "unpaid": "pending",
}


def iter_pages(fetch: Callable[..., Dict[str, Any]], key: str) -> Iterator[Dict[str, Any]]:
    """Yield every item of a paginated Qonto listing, following ``meta.next_page``."""
    page = 1
    while page:
        payload = fetch(current_page=page, per_page=PER_PAGE)
        for item in payload.get(key) or []:
            yield item
        page = (payload.get("meta") or {}).get("next_page")


def _each(run: SyncRun, db: Session, items: Iterator[Dict[str, Any]],
          handler: Callable[[Session, Dict[str, Any]], Optional[bool]], label: str) -> None:
    """
    Apply ``handler`` to every item, counting into ``run``.

    ``handler`` returns True for a created row, False for an updated one and
    None for a skipped item. Per-item failures are logged and skipped.
    """
    for item in items:
        run.processed += 1
        try:
            created = handler(db, item)
        except Exception:
            db.rollback()
            logger.warning("Failed to sync Qonto %s %s", label, item.get("id"), exc_info=True)
            continue
        if created is True:
            run.created += 1
        elif created is False:
            run.updated += 1


def upsert_client(db: Session, data: Dict[str, Any]) -> bool:
    values = {
        "qonto_id": data["id"],
        "name": data.get("name") or "Unnamed client",
        "email": data.get("email") or None,
        "phone": data.get("phone") or None,
        "address": data.get("address") or None,
        "vat_number": data.get("vat_number") or None,
        "country": data.get("country") or None,
        "currency": "EUR",
        "last_sync_at": utc_now_iso(),
        "is_active": True,
    }
    client = db.exec(select(Client).where(Client.qonto_id == data["id"])).first()
    created = client is None
    if created:
        client = Client(**values)
    else:
        for key, value in values.items():
            setattr(client, key, value)
        client.updated_at = utc_now_iso()
    db.add(client)
    db.commit()
    return created


def _find_client(db: Session, data: Dict[str, Any]) -> Optional[Client]:
    qonto_client = data.get("client") or {}
    qonto_client_id = data.get("client_id") or qonto_client.get("id")
    if qonto_client_id:
        client = db.exec(select(Client).where(Client.qonto_id == qonto_client_id)).first()
        if client:
            return client
    if qonto_client.get("name"):
        match = EntityMatcher.match_client_by_name(db.exec(select(Client)).all(), qonto_client["name"])
        if match:
            return db.get(Client, match["client_id"])
    return None


def upsert_client_invoice(db: Session, data: Dict[str, Any]) -> bool:
    """
    Upsert one Qonto client invoice and replace its line items.

    The invoice is linked to a project whose ``client_name`` is the invoice's
    client name, when such a project exists.
    """
    client = _find_client(db, data)
    client_name = (data.get("client") or {}).get("name") or (client.name if client else None)

    project_id = None
    if client and client_name:
        project = db.exec(select(Project).where(Project.client_name == client_name)).first()
        project_id = project.id if project else None

    total = money_value(data.get("total_amount"))
    vat = money_value(data.get("vat_amount"))
    status = data.get("status") or "draft"
    values = {
        "qonto_id": data["id"],
        "invoice_number": data.get("number") or data.get("invoice_number"),
        "client_id": client.id if client else None,
        "amount_total": total,
        "amount_net": total - vat,
        "amount_vat": vat,
        "currency": (data.get("total_amount") or {}).get("currency") or "EUR",
        "status": _CLIENT_STATUS_MAP.get(status, status),
        "issue_date": data.get("issue_date"),
        "due_date": data.get("due_date") or None,
        "paid_date": data.get("paid_at") or None,
        "description": data.get("description") or data.get("terms_and_conditions") or None,
        "attachment_id": data.get("attachment_id") or None,
        "pdf_url": data.get("invoice_url") or None,
        "is_auto_detected": True,
    }

    invoice = db.exec(select(ClientInvoice).where(ClientInvoice.qonto_id == data["id"])).first()
    created = invoice is None
    if created:
        invoice = ClientInvoice(**values)
    else:
        for key, value in values.items():
            setattr(invoice, key, value)
        invoice.updated_at = utc_now_iso()
    # A manual project link is kept when no automatic one is found
    if project_id:
        invoice.project_id = project_id
    db.add(invoice)
    db.flush()

    items = data.get("items") or []
    if items:
        for existing in db.exec(
            select(ClientInvoiceLineItem).where(ClientInvoiceLineItem.invoice_id == invoice.id)
        ).all():
            db.delete(existing)
        db.flush()
        for index, item in enumerate(items):
            db.add(ClientInvoiceLineItem(
                invoice_id=invoice.id,
                qonto_line_item_id=f"{data['id']}_item_{index}",
                description=f"{item.get('title') or ''} {item.get('description') or ''}".strip(),
                quantity=float(item.get("quantity") or 1),
                unit_price=money_value(item.get("unit_price")),
                total_amount=money_value(item.get("total_amount")),
                vat_rate=float(item.get("vat_rate") or 0),
                vat_amount=money_value(item.get("total_vat")),
            ))
    db.commit()
    return created


def upsert_supplier_invoice(db: Session, data: Dict[str, Any],
                            new_invoices: Optional[List[SupplierInvoice]] = None) -> Optional[bool]:
    """
    Upsert one Qonto supplier invoice.

    Only suppliers with an IBAN (contractors and project partners) are kept.
    Newly created invoices with an attachment are appended to ``new_invoices``
    for vision processing.
    """
    iban = (data.get("supplier_snapshot") or {}).get("iban")
    if not iban:
        return None

    values = {
        "qonto_id": data["id"],
        "supplier_name": data.get("supplier_name") or (data.get("supplier_snapshot") or {}).get("name") or "Unknown supplier",
        "amount_total": money_value(data.get("total_amount")),
        "amount_net": money_value(data.get("payable_amount")),
        "amount_vat": money_value(data.get("total_amount_credit_notes")),
        "currency": (data.get("total_amount") or {}).get("currency") or "EUR",
        "invoice_date": data.get("issue_date"),
        "description": data.get("description") or data.get("invoice_number") or None,
        "attachment_id": data.get("attachment_id") or None,
        "pdf_url": data.get("pdf_url") or None,
        "supplier_iban": iban,
    }

    invoice = db.exec(select(SupplierInvoice).where(SupplierInvoice.qonto_id == data["id"])).first()
    created = invoice is None
    if created:
        invoice = SupplierInvoice(**values, status="pending-assignment", is_processed=False)
    else:
        # Workflow status and processing flags belong to this application
        for key, value in values.items():
            setattr(invoice, key, value)
        invoice.updated_at = utc_now_iso()
    db.add(invoice)
    db.commit()

    if created and invoice.attachment_id and new_invoices is not None:
        new_invoices.append(invoice)
    return created


def run_qonto_sync(db: Session, client: QontoClient, sync_type: str = "all") -> Dict[str, Any]:
    """
    Run one Qonto sync pass.

    Args:
        db: Database session
        client: Configured Qonto client
        sync_type: "all", "clients", "client_invoices" or "supplier_invoices"

    Returns:
        dict: ``{"run": SyncRun, "new_supplier_invoices": [ids needing vision]}``

    Raises:
        SyncFailed: after the log row has been marked failed
    """
    run = SyncRun(db, QontoSyncLog, sync_type).start()
    new_supplier_invoices: List[SupplierInvoice] = []
    try:
        if sync_type in ("all", "clients"):
            _each(run, db, iter_pages(client.get_clients, "clients"), upsert_client, "client")
        if sync_type in ("all", "client_invoices"):
            _each(run, db, iter_pages(client.get_client_invoices, "client_invoices"),
                  upsert_client_invoice, "client invoice")
        if sync_type in ("all", "supplier_invoices"):
            _each(run, db, iter_pages(client.get_supplier_invoices, "supplier_invoices"),
                  lambda session, item: upsert_supplier_invoice(session, item, new_supplier_invoices),
                  "supplier invoice")
    except Exception as exc:
        run.fail(str(exc))
        raise SyncFailed(str(exc), details=str(exc), records_processed=run.processed) from exc
    run.complete()
    return {"run": run, "new_supplier_invoices": [invoice.id for invoice in new_supplier_invoices]}


def qonto_data_statistics(db: Session) -> Dict[str, int]:
    """Rows that originate from Qonto."""
    return {
        "clients": len(db.exec(select(Client.id).where(Client.qonto_id.is_not(None))).all()),
        "supplier_invoices": len(db.exec(
            select(SupplierInvoice.id).where(SupplierInvoice.qonto_id.is_not(None))
        ).all()),
        "client_invoices": len(db.exec(
            select(ClientInvoice.id).where(ClientInvoice.qonto_id.is_not(None))
        ).all()),
    }
