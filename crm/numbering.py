"""Human-readable document numbers (``INV202400001``, ``TSK2024000001``...)."""

from . import db
from .models import AMC, CallLog, Invoice, Lead, Payment, Quotation, Task

# model -> (prefix, zero padding, number column)
NUMBER_FORMATS = {
    Quotation: ("QT", 5, "quotation_number"),
    Invoice: ("INV", 5, "invoice_number"),
    Payment: ("PAY", 5, "payment_number"),
    AMC: ("AMC", 5, "amc_number"),
    Task: ("TSK", 6, "task_number"),
    CallLog: ("CL", 5, "call_number"),
    Lead: ("LD", 6, "lead_number"),
}


def _next_seq(model):
    last = db.session.query(model.id).order_by(model.id.desc()).first()
    return (last[0] + 1) if last else 1


def next_number(model, now):
    prefix, width, _ = NUMBER_FORMATS[model]
    nxt = _next_seq(model)
    if model is Lead:
        return f"{prefix}{nxt:0{width}d}"
    if model is CallLog:
        return f"{prefix}{now.year}{now.month:02d}{nxt:0{width}d}"
    return f"{prefix}{now.year}{nxt:0{width}d}"


def assign_number(obj, now):
    """Fill the number column of ``obj`` if it is still empty."""
    _, _, column = NUMBER_FORMATS[type(obj)]
    if not getattr(obj, column, None):
        setattr(obj, column, next_number(type(obj), now))
    return getattr(obj, column)
