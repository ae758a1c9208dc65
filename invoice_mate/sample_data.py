from __future__ import annotations

from datetime import date

from invoice_mate.dates import DUE_DATE_OFFSET, ISO_FORMAT, utc_today
from invoice_mate.totals import recompute
from schemas.invoice_schema import InvoiceRecord, LineItem

SAMPLE_INVOICE_NUMBER = "INV-0001"
SAMPLE_TAX_RATE = 7.5


def placeholder_invoice(
    today: date | None = None,
    invoice_number: str | None = None,
) -> InvoiceRecord:
    """Sample record used when no API key is configured."""
    issued = today or utc_today()
    record = InvoiceRecord(
        invoice_number=invoice_number or SAMPLE_INVOICE_NUMBER,
        date=issued.strftime(ISO_FORMAT),
        due_date=(issued + DUE_DATE_OFFSET).strftime(ISO_FORMAT),
        customer_name="Acme Corporation",
        customer_address="123 Business Ave, Suite 100, San Francisco, CA 94107",
        customer_email="accounting@acmecorp.example",
        items=[
            LineItem(id="1", description="Web Design Services", quantity=1, unit_price=1500),
            LineItem(id="2", description="Hosting (Annual)", quantity=1, unit_price=150),
        ],
        tax_rate=SAMPLE_TAX_RATE,
        notes="Thank you for your business!",
    )
    return recompute(record)
