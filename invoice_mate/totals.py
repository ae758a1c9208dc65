from __future__ import annotations

from schemas.invoice_schema import InvoiceRecord


def recompute(record: InvoiceRecord) -> InvoiceRecord:
    """Derive amounts and totals from quantity, unit price and tax rate only.

    Prior ``amount``/``subtotal``/``taxAmount``/``total`` values are ignored, so
    applying this twice gives the same record. The input is not modified.
    """
    items = [
        item.model_copy(update={"amount": item.quantity * item.unit_price})
        for item in record.items
    ]
    subtotal = sum((item.amount for item in items), 0.0)
    tax_amount = subtotal * record.tax_rate / 100
    return record.model_copy(
        update={
            "items": items,
            "subtotal": subtotal,
            "tax_amount": tax_amount,
            "total": subtotal + tax_amount,
        }
    )
