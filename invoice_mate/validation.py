from __future__ import annotations

import math
import re

from invoice_mate.dates import parse_calendar_date
from schemas.invoice_schema import InvoiceRecord, ValidationIssue

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email))


def item_field(index: int, field: str) -> str:
    return f"items[{index}].{field}"


def validate(record: InvoiceRecord) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    def add(field: str, message: str) -> None:
        issues.append(ValidationIssue(field=field, message=message))

    if not record.invoice_number.strip():
        add("invoiceNumber", "Invoice number is required")

    if not record.date.strip():
        add("date", "Invoice date is required")
    elif parse_calendar_date(record.date) is None:
        add("date", "Invoice date is invalid")

    if record.due_date.strip() and parse_calendar_date(record.due_date) is None:
        add("dueDate", "Due date is invalid")

    if not record.customer_name.strip():
        add("customerName", "Customer name is required")

    if record.customer_email.strip() and not is_valid_email(record.customer_email.strip()):
        add("customerEmail", "Customer email is invalid")

    if not record.items:
        add("items", "At least one invoice item is required")

    for index, item in enumerate(record.items):
        position = index + 1
        if not item.description.strip():
            add(item_field(index, "description"), f"Item #{position} description is required")
        if not _is_number(item.quantity) or item.quantity <= 0:
            add(item_field(index, "quantity"), f"Item #{position} quantity must be a positive number")
        if not _is_number(item.unit_price) or item.unit_price < 0:
            add(
                item_field(index, "unitPrice"),
                f"Item #{position} unit price must be a non-negative number",
            )

    if not _is_number(record.total) or record.total < 0:
        add("total", "Total amount must be a non-negative number")

    return issues


def errors_by_field(issues: list[ValidationIssue]) -> dict[str, str]:
    mapped: dict[str, str] = {}
    for issue in issues:
        mapped.setdefault(issue.field, issue.message)
    return mapped


def first_error(issues: list[ValidationIssue], field: str) -> str | None:
    return errors_by_field(issues).get(field)
