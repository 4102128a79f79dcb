from .money import (  # noqa: F401
    DocumentTotals, LineTotals, TaxMode, apply_totals, compute_document_totals, compute_line_item,
)
