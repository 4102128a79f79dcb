"""Quotation and invoice document operations.

Every operation mutates the rows it is given and leaves committing to the
caller. Status moves go through the graphs in :mod:`crm.engine.status`.
"""

from datetime import timedelta

from .. import db
from ..clock import system_clock
from ..errors import InvalidDateRange, InvalidTransition, ValidationError
from ..logging_config import get_logger
from ..models import Invoice, InvoiceItem, Quotation, QuotationItem
from ..numbering import next_number
from .ledger import refresh_balance, sync_invoice_status
from .money import TaxMode, apply_totals, compute_document_totals, money
from .status import (
    INVOICE_STATUS, OPEN_INVOICE_PAYMENT_STATUSES, QUOTATION_APPROVAL, QUOTATION_STATUS,
    transition,
)

logger = get_logger(__name__)

DEFAULT_VALIDITY_DAYS = 30
DEFAULT_DUE_DAYS = 30

_COMMON_ITEM_FIELDS = (
    "item_type", "item_name", "description", "unit",
    "quantity", "unit_price", "discount", "discount_type",
)
QUOTATION_ITEM_FIELDS = _COMMON_ITEM_FIELDS + ("tax_rate",)
INVOICE_ITEM_FIELDS = _COMMON_ITEM_FIELDS + ("hsn_code", "cgst", "sgst", "igst")


def _build_items(model, allowed, items_data):
    if not items_data:
        raise ValidationError("At least one item is required")

    rows = []
    for idx, data in enumerate(items_data):
        if not (data.get("item_name") or "").strip():
            raise ValidationError(f"Item {idx + 1}: item_name is required")
        if data.get("item_type", "Service") not in ("Product", "Service"):
            raise ValidationError(f"Item {idx + 1}: item_type must be Product or Service")
        kwargs = {k: data[k] for k in allowed if data.get(k) is not None}
        kwargs.setdefault("discount_type", "Percentage")
        rows.append(model(sort_order=idx, **kwargs))
    return rows


def _actor_id(user):
    return getattr(user, "id", user)


# -------------------------
# Quotations
# -------------------------
def new_quotation(client, subject, items, clock=system_clock, lead=None, valid_until=None,
                  created_by=None, terms_and_conditions=None, notes=None):
    if client is None:
        raise ValidationError("client is required")
    if not (subject or "").strip():
        raise ValidationError("subject is required")

    now = clock.now()
    valid_until = valid_until or now + timedelta(days=DEFAULT_VALIDITY_DAYS)
    if valid_until <= now:
        raise InvalidDateRange(now, valid_until, "valid_until must be in the future")

    q = Quotation(
        quotation_number=next_number(Quotation, now),
        client=client,
        lead=lead,
        subject=subject.strip(),
        quotation_date=now,
        valid_until=valid_until,
        status="Draft",
        approval_status="Pending",
        terms_and_conditions=terms_and_conditions,
        notes=notes,
        created_by_id=_actor_id(created_by),
    )
    q.items = _build_items(QuotationItem, QUOTATION_ITEM_FIELDS, items)
    apply_totals(q, q.items, TaxMode.SINGLE_RATE)
    db.session.add(q)

    logger.info("quotation_created", extra={"quotation_number": q.quotation_number, "grand_total": str(q.grand_total)})
    return q


def update_quotation_items(quotation, items, updated_by=None):
    if quotation.status != "Draft":
        raise InvalidTransition(
            "Quotation", "items", quotation.status, "edit",
            "Can only update draft quotations",
        )
    new_items = _build_items(QuotationItem, QUOTATION_ITEM_FIELDS, items)
    compute_document_totals(new_items, TaxMode.SINGLE_RATE)
    quotation.items = new_items
    apply_totals(quotation, quotation.items, TaxMode.SINGLE_RATE)
    if updated_by is not None:
        quotation.updated_by_id = _actor_id(updated_by)
    return quotation


def send_quotation(quotation, clock=system_clock):
    transition(quotation, QUOTATION_STATUS, "Sent")
    quotation.sent_date = clock.now()
    return quotation


def mark_quotation_viewed(quotation, clock=system_clock):
    transition(quotation, QUOTATION_STATUS, "Viewed")
    quotation.viewed_date = clock.now()
    return quotation


def accept_quotation(quotation, clock=system_clock):
    transition(quotation, QUOTATION_STATUS, "Accepted")
    quotation.accepted_date = clock.now()
    return quotation


def decline_quotation(quotation):
    transition(quotation, QUOTATION_STATUS, "Rejected")
    return quotation


def expire_quotation(quotation):
    transition(quotation, QUOTATION_STATUS, "Expired")
    return quotation


def approve_quotation(quotation, approver=None, clock=system_clock):
    transition(quotation, QUOTATION_APPROVAL, "Approved", field="approval_status")
    quotation.approved_by_id = _actor_id(approver)
    quotation.approved_date = clock.now()
    logger.info("quotation_approved", extra={"quotation_number": quotation.quotation_number})
    return quotation


def reject_quotation(quotation, reason, approver=None, clock=system_clock):
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required")
    transition(quotation, QUOTATION_APPROVAL, "Rejected", field="approval_status")
    quotation.rejection_reason = reason.strip()
    quotation.approved_by_id = _actor_id(approver)
    quotation.approved_date = clock.now()
    return quotation


def convert_to_invoice(quotation, clock=system_clock, created_by=None):
    """Create a Sent invoice mirroring an approved quotation and lock the quotation."""
    if quotation.status == "Converted":
        raise InvalidTransition("Quotation", "status", "Converted", "Converted", "Quotation already converted")
    if quotation.approval_status != "Approved":
        raise InvalidTransition(
            "Quotation", "status", quotation.status, "Converted",
            "Only approved quotations can be converted",
        )

    now = clock.now()
    inv = Invoice(
        invoice_number=next_number(Invoice, now),
        client_id=quotation.client_id,
        quotation=quotation,
        invoice_date=now,
        due_date=now + timedelta(days=DEFAULT_DUE_DAYS),
        status="Sent",
        sent_date=now,
        amount_paid=0,
        terms_and_conditions=quotation.terms_and_conditions,
        created_by_id=_actor_id(created_by),
    )
    # the single quotation rate is carried as IGST so line taxes are unchanged
    inv.items = [
        InvoiceItem(
            item_type=it.item_type,
            item_name=it.item_name,
            description=it.description,
            unit=it.unit,
            quantity=it.quantity,
            unit_price=it.unit_price,
            discount=it.discount,
            discount_type=it.discount_type,
            cgst=0,
            sgst=0,
            igst=it.tax_rate,
            sort_order=it.sort_order,
        )
        for it in quotation.items
    ]
    apply_totals(inv, inv.items, TaxMode.GST)
    refresh_balance(inv)
    db.session.add(inv)
    db.session.flush()

    transition(quotation, QUOTATION_STATUS, "Converted")
    quotation.converted_to_invoice_id = inv.id

    logger.info(
        "quotation_converted",
        extra={"quotation_number": quotation.quotation_number, "invoice_number": inv.invoice_number},
    )
    return inv


# -------------------------
# Invoices
# -------------------------
def new_invoice(client, items, clock=system_clock, due_date=None, quotation=None,
                payment_terms="Net 30", created_by=None, notes=None, terms_and_conditions=None):
    if client is None:
        raise ValidationError("client is required")

    now = clock.now()
    due_date = due_date or now + timedelta(days=DEFAULT_DUE_DAYS)
    if due_date < now:
        raise InvalidDateRange(now, due_date, "due_date cannot be before invoice_date")

    inv = Invoice(
        invoice_number=next_number(Invoice, now),
        client=client,
        quotation=quotation,
        invoice_date=now,
        due_date=due_date,
        status="Draft",
        amount_paid=0,
        payment_terms=payment_terms,
        notes=notes,
        terms_and_conditions=terms_and_conditions,
        created_by_id=_actor_id(created_by),
    )
    inv.items = _build_items(InvoiceItem, INVOICE_ITEM_FIELDS, items)
    apply_totals(inv, inv.items, TaxMode.GST)
    refresh_balance(inv)
    db.session.add(inv)

    logger.info("invoice_created", extra={"invoice_number": inv.invoice_number, "grand_total": str(inv.grand_total)})
    return inv


def update_invoice_items(invoice, items, updated_by=None):
    """Replace items; balance is recomputed from the existing amount_paid."""
    if invoice.status in ("Paid", "Cancelled"):
        raise InvalidTransition(
            "Invoice", "items", invoice.status, "edit",
            f"Items cannot change once an invoice is {invoice.status}",
        )

    new_items = _build_items(InvoiceItem, INVOICE_ITEM_FIELDS, items)
    totals = compute_document_totals(new_items, TaxMode.GST)
    if totals.grand_total < money(invoice.amount_paid):
        raise ValidationError(
            f"New total {totals.grand_total} is below the amount already paid ({invoice.amount_paid})"
        )

    invoice.items = new_items
    apply_totals(invoice, invoice.items, TaxMode.GST)
    refresh_balance(invoice)
    sync_invoice_status(invoice)
    if updated_by is not None:
        invoice.updated_by_id = _actor_id(updated_by)
    return invoice


def send_invoice(invoice, clock=system_clock):
    transition(invoice, INVOICE_STATUS, "Sent")
    invoice.sent_date = clock.now()
    return invoice


def cancel_invoice(invoice):
    transition(invoice, INVOICE_STATUS, "Cancelled")
    logger.info("invoice_cancelled", extra={"invoice_number": invoice.invoice_number})
    return invoice


def is_overdue(invoice, now) -> bool:
    return (
        invoice.due_date < now
        and invoice.payment_status in OPEN_INVOICE_PAYMENT_STATUSES
        and invoice.status not in ("Cancelled", "Overdue")
    )


def mark_overdue(invoice, clock=system_clock):
    if not is_overdue(invoice, clock.now()):
        raise InvalidTransition(
            "Invoice", "status", invoice.status, "Overdue",
            f"Invoice {invoice.invoice_number} is not overdue",
        )
    invoice.status = "Overdue"
    return invoice
