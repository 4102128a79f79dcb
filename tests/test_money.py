from decimal import Decimal

import pytest

from crm.engine.money import TaxMode, compute_document_totals, compute_line_item, tax_rate_of
from crm.errors import ValidationError
from factories import line


def test_percentage_discount_applied_before_tax():
    totals = compute_line_item(
        line(quantity=2, unit_price="500", discount="10", tax_rate=18), TaxMode.SINGLE_RATE,
    )
    assert totals.line_amount == Decimal("1000.00")
    assert totals.discount_amount == Decimal("100.00")
    assert totals.taxable_amount == Decimal("900.00")
    assert totals.tax_amount == Decimal("162.00")
    assert totals.total_amount == Decimal("1062.00")


def test_fixed_discount():
    totals = compute_line_item(
        line(unit_price="1000", discount="250", discount_type="Fixed", tax_rate=0), TaxMode.SINGLE_RATE,
    )
    assert totals.discount_amount == Decimal("250.00")
    assert totals.total_amount == Decimal("750.00")


def test_gst_mode_sums_components():
    item = line(unit_price="10000", cgst=9, sgst=9, igst=0)
    assert tax_rate_of(item, TaxMode.GST) == Decimal("18")
    assert compute_line_item(item, TaxMode.GST).total_amount == Decimal("11800.00")


def test_gst_defaults_when_components_missing():
    assert tax_rate_of(line(), TaxMode.GST) == Decimal("18")
    assert tax_rate_of(line(), TaxMode.SINGLE_RATE) == Decimal("18")


def test_tax_rounded_half_up_to_paise():
    # 333.33 * 18% = 59.9994 -> 60.00
    totals = compute_line_item(line(unit_price="333.33", tax_rate=18), TaxMode.SINGLE_RATE)
    assert totals.tax_amount == Decimal("60.00")

    # 0.25 * 10% = 0.025 -> 0.03
    totals = compute_line_item(line(unit_price="0.25", tax_rate=10), TaxMode.SINGLE_RATE)
    assert totals.tax_amount == Decimal("0.03")


def test_line_invariant_holds():
    for item in (
        line(quantity=3, unit_price="199.99", discount="7.5", tax_rate=12),
        line(quantity=1, unit_price="49.95", discount="5", discount_type="Fixed", tax_rate=5),
        line(quantity=10, unit_price="0.01", tax_rate=28),
        line(quantity="1.25", unit_price="0.99", tax_rate=18),
        line(quantity="2.5", unit_price="33.33", discount="3", tax_rate=12),
    ):
        t = compute_line_item(item, TaxMode.SINGLE_RATE)
        gross = Decimal(str(item["quantity"])) * Decimal(item["unit_price"])
        assert t.line_amount == gross
        assert t.total_amount == gross - t.discount_amount + t.tax_amount
        assert t.total_amount >= 0


def test_fractional_quantity_keeps_exact_line_amount():
    t = compute_line_item(line(quantity="1.25", unit_price="0.99", tax_rate=18), TaxMode.SINGLE_RATE)
    assert t.line_amount == Decimal("1.2375")
    assert t.tax_amount == Decimal("0.22")
    assert t.total_amount == Decimal("1.4575")


def test_document_totals_sum_exact_lines():
    totals = compute_document_totals(
        [line(quantity="1.25", unit_price="0.99", tax_rate=18), line(quantity=2, unit_price="10", tax_rate=0)],
        TaxMode.SINGLE_RATE,
    )
    assert totals.subtotal == Decimal("21.2375")
    assert totals.grand_total == totals.subtotal - totals.total_discount + totals.total_tax


@pytest.mark.parametrize(
    "item",
    [
        line(quantity=0),
        line(unit_price="-1"),
        line(discount="-5"),
        line(discount="101"),
        line(unit_price="100", discount="100.01", discount_type="Fixed"),
        line(discount_type="Coupon"),
        line(tax_rate=-1),
        line(unit_price="abc"),
    ],
)
def test_invalid_lines_rejected(item):
    with pytest.raises(ValidationError):
        compute_line_item(item, TaxMode.SINGLE_RATE)


def test_full_fixed_discount_allowed():
    t = compute_line_item(line(unit_price="100", discount="100", discount_type="Fixed"), TaxMode.SINGLE_RATE)
    assert t.total_amount == Decimal("0.00")


def test_document_totals_are_sums_of_lines():
    items = [
        line(unit_price="1000", discount="10", tax_rate=18),
        line(quantity=2, unit_price="250", tax_rate=5),
    ]
    totals = compute_document_totals(items, TaxMode.SINGLE_RATE)
    assert totals.subtotal == Decimal("1500.00")
    assert totals.total_discount == Decimal("100.00")
    assert totals.total_tax == Decimal("162.00") + Decimal("25.00")
    assert totals.grand_total == totals.subtotal - totals.total_discount + totals.total_tax
    assert totals.grand_total == Decimal("1587.00")


def test_totals_are_stable_on_recompute():
    items = [line(unit_price="123.45", discount="3", tax_rate=18)]
    assert compute_document_totals(items, TaxMode.SINGLE_RATE) == compute_document_totals(items, TaxMode.SINGLE_RATE)


def test_empty_document_is_zero():
    totals = compute_document_totals([], TaxMode.GST)
    assert totals.grand_total == 0
