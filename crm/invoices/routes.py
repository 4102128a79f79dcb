# crm/invoices/routes.py

from flask import Blueprint
from flask_login import login_required, current_user

from .. import db
from ..api import (
    app_clock, get_or_404, invoice_to_dict, items_payload, json_body, ok, parse_datetime, require_capability, row_to_dict,
)
from ..audit import log_audit
from ..engine import documents, ledger
from ..errors import ValidationError
from ..models import Invoice

invoices_bp = Blueprint("invoices", __name__)


@invoices_bp.route("/<int:invoice_id>/items", methods=["PUT"])
@login_required
@require_capability("invoices.update")
def update_items(invoice_id):
    inv = get_or_404(Invoice, invoice_id)
    data = json_body()
    old_total = inv.grand_total
    documents.update_invoice_items(inv, items_payload(data), updated_by=current_user)
    log_audit("Invoice", inv.id, "update_items", field="grand_total", old=old_total, new=inv.grand_total)
    db.session.commit()
    return ok(invoice_to_dict(inv))


@invoices_bp.route("/<int:invoice_id>/send", methods=["POST"])
@login_required
@require_capability("invoices.update")
def send_invoice(invoice_id):
    inv = get_or_404(Invoice, invoice_id)
    old = inv.status
    documents.send_invoice(inv, clock=app_clock())
    log_audit("Invoice", inv.id, "send", field="status", old=old, new=inv.status)
    db.session.commit()
    return ok(invoice_to_dict(inv))


@invoices_bp.route("/<int:invoice_id>/cancel", methods=["POST"])
@login_required
@require_capability("invoices.update")
def cancel_invoice(invoice_id):
    inv = get_or_404(Invoice, invoice_id)
    old = inv.status
    documents.cancel_invoice(inv)
    log_audit("Invoice", inv.id, "cancel", field="status", old=old, new=inv.status)
    db.session.commit()
    return ok(invoice_to_dict(inv))


# -------------------------
# Payments
# -------------------------
@invoices_bp.route("/<int:invoice_id>/payments", methods=["POST"])
@login_required
@require_capability("payments.create")
def record_payment(invoice_id):
    data = json_body()
    if data.get("amount") in (None, ""):
        raise ValidationError("Valid amount is required")

    details = {
        k: data.get(k)
        for k in ("transaction_id", "cheque_number", "bank_name", "receipt_number", "notes")
        if data.get(k)
    }
    cheque_date = parse_datetime(data.get("cheque_date"), "cheque_date", required=False)
    if cheque_date is not None:
        details["cheque_date"] = cheque_date.date()

    payment = ledger.record_payment(
        invoice_id,
        data.get("amount"),
        clock=app_clock(),
        payment_mode=data.get("payment_mode") or "Cash",
        payment_date=parse_datetime(data.get("payment_date"), "payment_date", required=False),
        created_by=current_user,
        **details,
    )
    return ok(row_to_dict(payment), status=201, invoice=invoice_to_dict(payment.invoice))
