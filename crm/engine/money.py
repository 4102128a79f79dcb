"""Line item and document arithmetic for quotations and invoices.

Discount is applied before tax. The line amount is the exact product of
quantity and unit price. Discount and tax amounts are rounded half-up to
paise at line level; document aggregates are exact sums of the
line values, so ``grand_total == subtotal - total_discount + total_tax``
always holds.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Iterable, NamedTuple

from ..errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class TaxMode(str, Enum):
    SINGLE_RATE = "single_rate"  # quotation: one tax_rate
    GST = "gst"                  # invoice: cgst + sgst + igst


class LineTotals(NamedTuple):
    line_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


class DocumentTotals(NamedTuple):
    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    grand_total: Decimal


def _d(val, default="0"):
    if val is None:
        return Decimal(default)
    if isinstance(val, Decimal):
        return val
    s = str(val).strip().replace(",", "")
    if s == "":
        return Decimal(default)
    try:
        return Decimal(s)
    except InvalidOperation:
        raise ValidationError(f"Not a number: {val!r}")


def money(val) -> Decimal:
    return _d(val).quantize(CENT, rounding=ROUND_HALF_UP)


def _get(item, key, default=None):
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)


def tax_rate_of(item, tax_mode) -> Decimal:
    if TaxMode(tax_mode) is TaxMode.GST:
        return (
            _d(_get(item, "cgst"), "9")
            + _d(_get(item, "sgst"), "9")
            + _d(_get(item, "igst"), "0")
        )
    return _d(_get(item, "tax_rate"), "18")


def compute_line_item(item, tax_mode) -> LineTotals:
    """Derived amounts for one line item (a dict or a model row)."""
    quantity = _d(_get(item, "quantity"), "1")
    unit_price = _d(_get(item, "unit_price"))
    discount = _d(_get(item, "discount"))
    discount_type = _get(item, "discount_type") or "Percentage"
    rate = tax_rate_of(item, tax_mode)

    if quantity < 1:
        raise ValidationError(f"Quantity must be at least 1; got {quantity}")
    if unit_price < 0:
        raise ValidationError(f"Unit price cannot be negative; got {unit_price}")
    if discount < 0:
        raise ValidationError(f"Discount cannot be negative; got {discount}")
    if rate < 0:
        raise ValidationError(f"Tax rate cannot be negative; got {rate}")

    line_amount = quantity * unit_price

    if discount_type == "Percentage":
        if discount > HUNDRED:
            raise ValidationError(f"Percentage discount cannot exceed 100; got {discount}")
        discount_amount = money(line_amount * discount / HUNDRED)
    elif discount_type == "Fixed":
        if discount > line_amount:
            raise ValidationError(f"Fixed discount {discount} exceeds line amount {line_amount}")
        discount_amount = money(discount)
    else:
        raise ValidationError(f"Unknown discount type: {discount_type!r}")

    taxable_amount = line_amount - discount_amount
    tax_amount = money(taxable_amount * rate / HUNDRED)

    return LineTotals(
        line_amount=line_amount,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_amount=tax_amount,
        total_amount=taxable_amount + tax_amount,
    )


def compute_document_totals(items: Iterable, tax_mode) -> DocumentTotals:
    subtotal = total_discount = total_tax = ZERO
    for item in items:
        line = compute_line_item(item, tax_mode)
        subtotal += line.line_amount
        total_discount += line.discount_amount
        total_tax += line.tax_amount

    return DocumentTotals(
        subtotal=subtotal,
        total_discount=total_discount,
        total_tax=total_tax,
        grand_total=subtotal - total_discount + total_tax,
    )


def apply_totals(document, items, tax_mode) -> DocumentTotals:
    """Write derived line fields onto ``items`` and aggregates onto ``document``."""
    items = list(items)
    for item in items:
        line = compute_line_item(item, tax_mode)
        item.tax_amount = line.tax_amount
        item.total_amount = line.total_amount

    totals = compute_document_totals(items, tax_mode)
    document.subtotal = totals.subtotal
    document.total_discount = totals.total_discount
    document.total_tax = totals.total_tax
    document.grand_total = totals.grand_total
    return totals
