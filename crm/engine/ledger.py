"""Payment ledger: apply and reverse payments against an invoice balance.

``apply_payment`` / ``reverse_payment`` mutate in-memory rows only. The
``record_payment`` / ``delete_payment`` services wrap them in a transaction
guarded by the invoice's ``version_id``: a concurrent writer makes the
flush fail with ``StaleDataError`` and the whole read-modify-write is
retried from a fresh read.
"""

from decimal import Decimal

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from .. import db
from ..audit import log_audit
from ..clock import system_clock
from ..errors import (
    AlreadySettled, ConcurrentUpdate, ExceedsBalance, NotFound, ValidationError,
)
from ..logging_config import get_logger
from ..models import Invoice, Payment
from ..numbering import next_number
from .money import _d, money
from .status import derive_payment_status

logger = get_logger(__name__)

PAYMENT_MODES = ("Cash", "Cheque", "Bank Transfer", "UPI", "Card", "Online", "Other")

_PAYMENT_DETAIL_FIELDS = (
    "transaction_id", "cheque_number", "cheque_date", "bank_name", "receipt_number", "notes",
)


def refresh_balance(invoice):
    """Re-derive balance_amount and payment_status from amount_paid."""
    grand = money(invoice.grand_total)
    paid = money(invoice.amount_paid)
    invoice.balance_amount = grand - paid
    invoice.payment_status = derive_payment_status(paid, grand)
    return invoice


def sync_invoice_status(invoice, unpaid_status=None):
    if invoice.payment_status == "Paid":
        invoice.status = "Paid"
    elif invoice.payment_status == "Partial":
        invoice.status = "Partial"
    elif unpaid_status:
        invoice.status = unpaid_status


def apply_payment(invoice, amount, clock=system_clock, payment_mode="Cash", created_by=None, payment_date=None, **details):
    amount = _d(amount)
    if amount <= 0:
        raise ValidationError("Valid amount is required")
    if invoice.status == "Cancelled":
        raise ValidationError(f"Invoice {invoice.invoice_number} is cancelled")
    if invoice.payment_status == "Paid":
        raise AlreadySettled(f"Invoice {invoice.invoice_number} already fully paid")

    balance = money(invoice.balance_amount)
    if amount > balance:
        raise ExceedsBalance(amount, balance)
    if payment_mode not in PAYMENT_MODES:
        raise ValidationError(f"Unknown payment mode: {payment_mode!r}")

    unknown = set(details) - set(_PAYMENT_DETAIL_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown payment fields: {', '.join(sorted(unknown))}")

    now = clock.now()
    payment = Payment(
        payment_number=next_number(Payment, now),
        client_id=invoice.client_id,
        amount=amount,
        payment_mode=payment_mode,
        payment_date=payment_date or now,
        status="Completed",
        created_by_id=getattr(created_by, "id", created_by),
        **details,
    )

    invoice.payments.append(payment)
    invoice.amount_paid = money(invoice.amount_paid) + amount
    refresh_balance(invoice)
    sync_invoice_status(invoice)

    logger.info(
        "payment_applied",
        extra={
            "invoice_id": invoice.id,
            "amount": str(amount),
            "balance": str(invoice.balance_amount),
            "payment_status": invoice.payment_status,
        },
    )
    return payment


def reverse_payment(invoice, payment):
    """Undo ``payment`` on ``invoice``; a payment not on the invoice is ignored."""
    if payment not in invoice.payments:
        logger.debug("payment_reverse_noop", extra={"invoice_id": invoice.id, "payment_id": payment.id})
        return invoice

    amount = _d(payment.amount)
    invoice.payments.remove(payment)
    invoice.amount_paid = max(money(invoice.amount_paid) - amount, Decimal("0"))
    refresh_balance(invoice)
    sync_invoice_status(invoice, unpaid_status="Sent")

    logger.info(
        "payment_reversed",
        extra={
            "invoice_id": invoice.id,
            "amount": str(amount),
            "balance": str(invoice.balance_amount),
            "payment_status": invoice.payment_status,
        },
    )
    return invoice


# -------------------------
# Transactional services
# -------------------------
def _max_retries(max_retries):
    if max_retries is not None:
        return max_retries
    return current_app.config.get("LEDGER_MAX_RETRIES", 3)


def record_payment(invoice_id, amount, clock=system_clock, max_retries=None, **kwargs):
    """Load the invoice, apply a payment and commit, retrying on a stale version."""
    attempts = _max_retries(max_retries)
    for attempt in range(1, attempts + 1):
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound("Invoice", invoice_id)
        try:
            payment = apply_payment(invoice, amount, clock=clock, **kwargs)
            db.session.flush()
            log_audit("Payment", payment.id, "create", field="amount", new=payment.amount,
                      description=f"Payment on {invoice.invoice_number}")
            db.session.commit()
            return payment
        except StaleDataError:
            db.session.rollback()
            logger.warning("ledger_conflict", extra={"invoice_id": invoice_id, "attempt": attempt})
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrentUpdate(f"Invoice {invoice_id} changed concurrently {attempts} times; giving up")


def delete_payment(payment_id, max_retries=None):
    """Reverse a payment against its invoice and delete it."""
    attempts = _max_retries(max_retries)
    for attempt in range(1, attempts + 1):
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            raise NotFound("Payment", payment_id)
        invoice = payment.invoice
        try:
            reverse_payment(invoice, payment)
            log_audit("Payment", payment_id, "delete", field="amount", old=payment.amount,
                      description=f"Payment reversed on {invoice.invoice_number}")
            db.session.commit()
            return invoice
        except StaleDataError:
            db.session.rollback()
            logger.warning("ledger_conflict", extra={"invoice_id": invoice.id, "attempt": attempt})
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrentUpdate(f"Payment {payment_id} could not be reversed after {attempts} attempts")
