from __future__ import annotations

import logging
import math
import re
from datetime import date
from typing import Any

from invoice_mate.dates import ISO_FORMAT, default_due_date, repair_slashed_date, utc_today
from invoice_mate.errors import NormalizationError
from schemas.invoice_schema import InvoiceRecord, LineItem, new_item_id

logger = logging.getLogger(__name__)

# Canonical camelCase key first; the rest are spellings models tend to produce.
DEFAULT_FIELD_ALIASES: dict[str, list[str]] = {
    "invoiceNumber": ["invoiceNumber", "invoice_number", "invoiceNo", "invoice_no", "invoiceId"],
    "date": ["date", "invoiceDate", "invoice_date", "issueDate", "issue_date"],
    "dueDate": ["dueDate", "due_date", "paymentDue", "payment_due"],
    "customerName": ["customerName", "customer_name", "clientName", "client_name", "billToName"],
    "customerAddress": ["customerAddress", "customer_address", "billingAddress", "billing_address"],
    "customerEmail": ["customerEmail", "customer_email", "clientEmail", "email"],
    "items": ["items", "lineItems", "line_items", "products"],
    "subtotal": ["subtotal", "subTotal", "sub_total"],
    "taxRate": ["taxRate", "tax_rate", "vatRate", "vat_rate"],
    "taxAmount": ["taxAmount", "tax_amount", "tax", "vat"],
    "total": ["total", "totalAmount", "total_amount", "grandTotal", "grand_total"],
    "notes": ["notes", "note", "comments"],
}

DEFAULT_ITEM_ALIASES: dict[str, list[str]] = {
    "id": ["id"],
    "description": ["description", "name", "item", "title"],
    "quantity": ["quantity", "qty"],
    "unitPrice": ["unitPrice", "unit_price", "price", "rate"],
    "amount": ["amount", "lineTotal", "line_total", "total"],
}

_TEXT_FIELDS = ("customerName", "customerAddress", "customerEmail", "notes")


def to_number(value: Any) -> float | None:
    """Permissive numeric parsing: ``"$1,250.00"`` -> 1250.0, unusable input -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None
    try:
        number = float(value.strip())
    except ValueError:
        text = re.sub(r"[^0-9,.\-]", "", value.strip()).replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


class ExtractionNormalizer:
    def __init__(
        self,
        *,
        strict: bool = False,
        field_aliases: dict[str, list[str]] | None = None,
        item_aliases: dict[str, list[str]] | None = None,
    ) -> None:
        self.strict = strict
        self.field_aliases = field_aliases or DEFAULT_FIELD_ALIASES
        self.item_aliases = item_aliases or DEFAULT_ITEM_ALIASES

    @staticmethod
    def _pick_from(data: dict[str, Any], aliases: list[str], default: Any = None) -> Any:
        for alias in aliases:
            if alias in data and data[alias] not in (None, ""):
                return data[alias]
        return default

    def _pick(self, data: dict[str, Any], field_name: str, default: Any = None) -> Any:
        return self._pick_from(data, self.field_aliases.get(field_name, [field_name]), default)

    def _pick_item(self, data: dict[str, Any], field_name: str, default: Any = None) -> Any:
        return self._pick_from(data, self.item_aliases.get(field_name, [field_name]), default)

    def _number(self, value: Any, field: str) -> float | None:
        number = to_number(value)
        if number is None and value is not None and self.strict:
            raise NormalizationError(f"{field} is not a number: {value!r}", field=field)
        return number

    @staticmethod
    def _text(value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    def _normalize_items(self, raw: Any) -> list[LineItem]:
        if not isinstance(raw, list):
            if raw is not None and self.strict:
                raise NormalizationError("items must be a list", field="items")
            return []

        items: list[LineItem] = []
        seen_ids: set[str] = set()
        for index, entry in enumerate(raw):
            if not isinstance(entry, dict):
                if self.strict:
                    raise NormalizationError(
                        f"items[{index}] must be an object", field=f"items[{index}]"
                    )
                logger.debug("Skipping non-object line item at index %d", index)
                continue

            item_id = str(self._pick_item(entry, "id", default="")).strip()
            if not item_id or item_id in seen_ids:
                item_id = new_item_id()
            seen_ids.add(item_id)

            description = self._pick_item(entry, "description", default="")
            quantity = self._number(self._pick_item(entry, "quantity"), f"items[{index}].quantity")
            unit_price = self._number(self._pick_item(entry, "unitPrice"), f"items[{index}].unitPrice")
            quantity = quantity if quantity is not None else 0.0
            unit_price = unit_price if unit_price is not None else 0.0

            amount = self._number(self._pick_item(entry, "amount"), f"items[{index}].amount")
            if amount is None:
                amount = quantity * unit_price

            items.append(
                LineItem(
                    id=item_id,
                    description=str(description).strip(),
                    quantity=quantity,
                    unit_price=unit_price,
                    amount=amount,
                )
            )
        return items

    def _normalize_date(self, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return repair_slashed_date(str(value))

    def normalize(self, raw: Any, *, today: date | None = None) -> InvoiceRecord:
        if not isinstance(raw, dict):
            if self.strict:
                raise NormalizationError("Extraction result must be an object", field="")
            raw = {}

        items = self._normalize_items(self._pick(raw, "items"))
        if not items:
            items = [LineItem(description="", quantity=1.0, unit_price=0.0, amount=0.0)]

        subtotal = self._number(self._pick(raw, "subtotal"), "subtotal")
        if subtotal is None:
            subtotal = sum(item.amount for item in items)

        tax_rate = self._number(self._pick(raw, "taxRate"), "taxRate")
        if tax_rate is None:
            tax_rate = 0.0

        tax_amount = self._number(self._pick(raw, "taxAmount"), "taxAmount")
        if tax_amount is None:
            tax_amount = subtotal * tax_rate / 100

        total = self._number(self._pick(raw, "total"), "total")
        if total is None:
            total = subtotal + tax_amount

        current_day = today or utc_today()
        invoice_date = self._normalize_date(self._pick(raw, "date"))
        if not invoice_date:
            invoice_date = current_day.strftime(ISO_FORMAT)
        due_date = self._normalize_date(self._pick(raw, "dueDate"))
        if not due_date:
            due_date = default_due_date(invoice_date, today=current_day)

        invoice_number = self._pick(raw, "invoiceNumber", default="")
        if isinstance(invoice_number, (int, float)) and not isinstance(invoice_number, bool):
            invoice_number = str(invoice_number)

        text_fields = {name: self._text(self._pick(raw, name)) for name in _TEXT_FIELDS}

        return InvoiceRecord(
            invoice_number=self._text(invoice_number),
            date=invoice_date,
            due_date=due_date,
            customer_name=text_fields["customerName"],
            customer_address=text_fields["customerAddress"],
            customer_email=text_fields["customerEmail"],
            items=items,
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total=total,
            notes=text_fields["notes"],
        )


_DEFAULT_NORMALIZER = ExtractionNormalizer()


def normalize(raw: Any, *, today: date | None = None) -> InvoiceRecord:
    return _DEFAULT_NORMALIZER.normalize(raw, today=today)
