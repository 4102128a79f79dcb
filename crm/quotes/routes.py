# crm/quotes/routes.py

from functools import partial

from flask import Blueprint
from flask_login import login_required, current_user

from .. import db
from ..api import app_clock, get_or_404, items_payload, json_body, ok, quotation_to_dict, invoice_to_dict, require_capability
from ..audit import log_audit
from ..engine import documents
from ..models import Quotation

quotes_bp = Blueprint("quotes", __name__)


def _status_change(quotation_id, op, action):
    q = get_or_404(Quotation, quotation_id)
    old = q.status
    op(q)
    log_audit("Quotation", q.id, action, field="status", old=old, new=q.status)
    db.session.commit()
    return ok(quotation_to_dict(q))


# -------------------------
# Items (Draft only)
# -------------------------
@quotes_bp.route("/<int:quotation_id>/items", methods=["PUT"])
@login_required
@require_capability("quotations.update")
def update_items(quotation_id):
    q = get_or_404(Quotation, quotation_id)
    data = json_body()
    documents.update_quotation_items(q, items_payload(data), updated_by=current_user)
    log_audit("Quotation", q.id, "update_items", field="grand_total", new=q.grand_total)
    db.session.commit()
    return ok(quotation_to_dict(q))


# -------------------------
# Status
# -------------------------
@quotes_bp.route("/<int:quotation_id>/send", methods=["POST"])
@login_required
@require_capability("quotations.update")
def send_quotation(quotation_id):
    return _status_change(quotation_id, partial(documents.send_quotation, clock=app_clock()), "send")


@quotes_bp.route("/<int:quotation_id>/view", methods=["POST"])
@login_required
@require_capability("quotations.update")
def mark_viewed(quotation_id):
    return _status_change(quotation_id, partial(documents.mark_quotation_viewed, clock=app_clock()), "view")


@quotes_bp.route("/<int:quotation_id>/accept", methods=["POST"])
@login_required
@require_capability("quotations.update")
def accept_quotation(quotation_id):
    return _status_change(quotation_id, partial(documents.accept_quotation, clock=app_clock()), "accept")


@quotes_bp.route("/<int:quotation_id>/decline", methods=["POST"])
@login_required
@require_capability("quotations.update")
def decline_quotation(quotation_id):
    return _status_change(quotation_id, documents.decline_quotation, "decline")


# -------------------------
# Approval
# -------------------------
@quotes_bp.route("/<int:quotation_id>/approve", methods=["POST"])
@login_required
@require_capability("quotations.approve")
def approve_quotation(quotation_id):
    q = get_or_404(Quotation, quotation_id)
    documents.approve_quotation(q, approver=current_user, clock=app_clock())
    log_audit("Quotation", q.id, "approve", field="approval_status", old="Pending", new=q.approval_status)
    db.session.commit()
    return ok(quotation_to_dict(q))


@quotes_bp.route("/<int:quotation_id>/reject", methods=["POST"])
@login_required
@require_capability("quotations.approve")
def reject_quotation(quotation_id):
    q = get_or_404(Quotation, quotation_id)
    data = json_body()
    documents.reject_quotation(q, data.get("reason"), approver=current_user, clock=app_clock())
    log_audit("Quotation", q.id, "reject", field="approval_status", old="Pending", new=q.approval_status)
    db.session.commit()
    return ok(quotation_to_dict(q))


# -------------------------
# Convert -> Invoice
# -------------------------
@quotes_bp.route("/<int:quotation_id>/convert", methods=["POST"])
@login_required
@require_capability("quotations.approve")
def convert_quotation(quotation_id):
    q = get_or_404(Quotation, quotation_id)
    inv = documents.convert_to_invoice(q, clock=app_clock(), created_by=current_user)
    log_audit("Quotation", q.id, "convert", field="converted_to_invoice_id", new=inv.id)
    db.session.commit()
    return ok(quotation_to_dict(q), status=201, invoice=invoice_to_dict(inv))
