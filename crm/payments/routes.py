# crm/payments/routes.py

from flask import Blueprint
from flask_login import login_required

from ..api import invoice_to_dict, ok, require_capability
from ..engine import ledger

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/<int:payment_id>", methods=["DELETE"])
@login_required
@require_capability("payments.delete")
def delete_payment(payment_id):
    invoice = ledger.delete_payment(payment_id)
    return ok(invoice_to_dict(invoice))
