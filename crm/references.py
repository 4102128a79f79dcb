"""Weak cross-entity references (``Task.related_to``).

A reference is a ``(module, record_id)`` pair. It never owns the target and
may dangle; :func:`resolve` returns ``None`` in that case.
"""

from enum import Enum
from typing import NamedTuple


class Module(str, Enum):
    CLIENT = "Client"
    LEAD = "Lead"
    QUOTATION = "Quotation"
    INVOICE = "Invoice"
    AMC = "AMC"
    CALL_LOG = "CallLog"


class RelatedTo(NamedTuple):
    module: Module
    record_id: int

    def __str__(self):
        return f"{self.module.value}:{self.record_id}"


def model_for(module):
    """Model class backing ``module``."""
    from . import models

    table = {
        Module.CLIENT: models.Client,
        Module.LEAD: models.Lead,
        Module.QUOTATION: models.Quotation,
        Module.INVOICE: models.Invoice,
        Module.AMC: models.AMC,
        Module.CALL_LOG: models.CallLog,
    }
    return table[Module(module)]


def module_of(instance):
    """Inverse of :func:`model_for` for a model instance."""
    for module in Module:
        if isinstance(instance, model_for(module)):
            return module
    raise KeyError(type(instance).__name__)


def ref_to(instance):
    return RelatedTo(module_of(instance), instance.id)


def resolve(ref, session):
    if ref is None:
        return None
    return session.get(model_for(ref.module), ref.record_id)
