"""Legal status transitions.

Each graph maps a current value to the set of values it may move to. A
value absent from the mapping (or mapped to an empty set) is terminal.
"""

from ..errors import InvalidTransition

QUOTATION_STATUS = {
    "Draft": {"Sent", "Converted"},
    "Sent": {"Sent", "Viewed", "Converted"},
    "Viewed": {"Accepted", "Rejected", "Expired", "Converted"},
    "Accepted": {"Converted"},
    "Rejected": {"Converted"},
    "Expired": {"Converted"},
    "Converted": set(),
}

QUOTATION_APPROVAL = {
    "Pending": {"Approved", "Rejected"},
    "Approved": set(),
    "Rejected": set(),
}

# Partial / Paid are driven by the ledger, Overdue by the sweep.
INVOICE_STATUS = {
    "Draft": {"Sent", "Cancelled"},
    "Sent": {"Sent", "Cancelled"},
    "Partial": set(),
    "Paid": set(),
    "Overdue": set(),
    "Cancelled": set(),
}

AMC_STATUS = {
    "Active": {"Expired", "Renewed", "Cancelled", "On Hold"},
    "On Hold": {"Active", "Cancelled"},
    "Expired": set(),
    "Renewed": set(),
    "Cancelled": set(),
}

AMC_SERVICE_STATUS = {
    "Scheduled": {"Completed", "Missed", "Rescheduled", "Cancelled"},
    "Rescheduled": {"Completed", "Missed", "Rescheduled", "Cancelled"},
    "Completed": set(),
    "Missed": set(),
    "Cancelled": set(),
}

OPEN_INVOICE_PAYMENT_STATUSES = ("Unpaid", "Partial")


def can_transition(graph, current, target) -> bool:
    return target in graph.get(current, ())


def ensure_transition(graph, entity, field, current, target):
    if not can_transition(graph, current, target):
        raise InvalidTransition(entity, field, current, target)


def transition(obj, graph, target, field="status"):
    """Move ``obj.<field>`` to ``target`` or raise InvalidTransition."""
    current = getattr(obj, field)
    ensure_transition(graph, type(obj).__name__, field, current, target)
    setattr(obj, field, target)
    return current


def derive_payment_status(amount_paid, grand_total) -> str:
    if amount_paid <= 0:
        return "Unpaid"
    if amount_paid >= grand_total:
        return "Paid"
    return "Partial"
