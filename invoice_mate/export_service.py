from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from types import ModuleType
from typing import Any, Literal

from invoice_mate.config import DEFAULT_SELLER_BLOCK
from invoice_mate.errors import ExportError
from invoice_mate.formatting import format_pdf_currency
from invoice_mate.resources import TransientResource
from schemas.invoice_schema import InvoiceRecord

logger = logging.getLogger(__name__)

ExportFormat = Literal["json", "pdf"]

MEDIA_TYPES: dict[str, str] = {
    "json": "application/json",
    "pdf": "application/pdf",
}

# A4 portrait, in points.
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
MARGIN = 50
ROW_HEIGHT = 20
FONT = "helv"
BOLD_FONT = "hebo"
MUTED = (0.35, 0.35, 0.35)
HEADER_FILL = (0.93, 0.93, 0.93)

# Right edges of the numeric columns.
QUANTITY_RIGHT = 360
UNIT_PRICE_RIGHT = 450
AMOUNT_RIGHT = PAGE_WIDTH - MARGIN
DESCRIPTION_WIDTH = 230


def export_filename(record: InvoiceRecord, fmt: ExportFormat) -> str:
    if fmt not in MEDIA_TYPES:
        raise ValueError(f"Unsupported export format: {fmt}")
    number = re.sub(r"[^A-Za-z0-9._-]+", "_", record.invoice_number.strip()).strip("._")
    return f"invoice_{number or 'draft'}.{fmt}"


def encode_json(record: InvoiceRecord) -> str:
    return json.dumps(record.to_wire(), indent=2, ensure_ascii=False)


def decode_json(text: str | bytes) -> InvoiceRecord:
    return InvoiceRecord.model_validate_json(text)


@lru_cache(maxsize=1)
def _load_renderer() -> ModuleType:
    try:
        import fitz  # PyMuPDF
    except ImportError as exc:
        raise ExportError("PyMuPDF is required for PDF export", code="pdf_failed") from exc
    return fitz


def _format_quantity(value: float) -> str:
    return f"{value:g}"


class _PdfWriter:
    def __init__(self, fitz: ModuleType) -> None:
        self._fitz = fitz
        self.doc = fitz.open()
        self.page: Any = None
        self.y = 0.0
        self.new_page()

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = MARGIN + 20

    def ensure_space(self, height: float) -> bool:
        if self.y + height <= PAGE_HEIGHT - MARGIN:
            return False
        self.new_page()
        return True

    def text_width(self, text: str, size: float, bold: bool = False) -> float:
        return self._fitz.get_text_length(text, fontname=BOLD_FONT if bold else FONT, fontsize=size)

    def text(
        self,
        x: float,
        y: float,
        value: str,
        *,
        size: float = 10,
        bold: bool = False,
        color: tuple[float, float, float] = (0, 0, 0),
    ) -> None:
        if not value:
            return
        self.page.insert_text(
            (x, y),
            value,
            fontsize=size,
            fontname=BOLD_FONT if bold else FONT,
            color=color,
        )

    def right_text(self, right: float, y: float, value: str, *, size: float = 10, bold: bool = False) -> None:
        self.text(right - self.text_width(value, size, bold), y, value, size=size, bold=bold)

    def fit(self, value: str, width: float, size: float = 10) -> str:
        if self.text_width(value, size) <= width:
            return value
        while value and self.text_width(value + "...", size) > width:
            value = value[:-1]
        return value + "..."

    def wrap(self, value: str, width: float, size: float = 10) -> list[str]:
        lines: list[str] = []
        for paragraph in value.splitlines() or [""]:
            current = ""
            for word in paragraph.split():
                candidate = f"{current} {word}".strip()
                if current and self.text_width(candidate, size) > width:
                    lines.append(current)
                    current = word
                else:
                    current = candidate
            lines.append(current)
        return lines

    def rule(self, y: float) -> None:
        self.page.draw_line((MARGIN, y), (PAGE_WIDTH - MARGIN, y), color=MUTED, width=0.5)

    def table_header(self) -> None:
        top = self.y
        rect = self._fitz.Rect(MARGIN, top, PAGE_WIDTH - MARGIN, top + ROW_HEIGHT)
        self.page.draw_rect(rect, color=None, fill=HEADER_FILL)
        baseline = top + 14
        self.text(MARGIN + 5, baseline, "Description", bold=True)
        self.right_text(QUANTITY_RIGHT, baseline, "Quantity", bold=True)
        self.right_text(UNIT_PRICE_RIGHT, baseline, "Unit Price", bold=True)
        self.right_text(AMOUNT_RIGHT - 5, baseline, "Amount", bold=True)
        self.y = top + ROW_HEIGHT

    def finish(self) -> bytes:
        try:
            return self.doc.tobytes()
        finally:
            self.close()

    def close(self) -> None:
        if not self.doc.is_closed:
            self.doc.close()


def _draw_heading(pdf: _PdfWriter, record: InvoiceRecord) -> None:
    pdf.text(MARGIN, pdf.y + 10, "INVOICE", size=24, bold=True)
    meta = [
        f"Invoice #: {record.invoice_number}",
        f"Date: {record.date}",
        f"Due Date: {record.due_date}",
    ]
    for offset, line in enumerate(meta):
        pdf.right_text(AMOUNT_RIGHT, pdf.y + offset * 15, line)
    pdf.y += 3 * 15 + 25


def _draw_parties(pdf: _PdfWriter, record: InvoiceRecord, seller_block: tuple[str, ...]) -> None:
    top = pdf.y
    pdf.text(MARGIN, top, "From:", bold=True)
    for offset, line in enumerate(seller_block, start=1):
        pdf.text(MARGIN, top + offset * 14, line, color=MUTED)

    bill_to = [record.customer_name]
    bill_to.extend(part.strip() for part in record.customer_address.split(",") if part.strip())
    if record.customer_email:
        bill_to.append(record.customer_email)
    column = PAGE_WIDTH / 2
    pdf.text(column, top, "Bill To:", bold=True)
    for offset, line in enumerate(bill_to, start=1):
        pdf.text(column, top + offset * 14, pdf.fit(line, AMOUNT_RIGHT - column), color=MUTED)

    pdf.y = top + (max(len(seller_block), len(bill_to)) + 1) * 14 + 20


def _draw_items(pdf: _PdfWriter, record: InvoiceRecord) -> None:
    pdf.table_header()
    for item in record.items:
        if pdf.ensure_space(ROW_HEIGHT):
            pdf.table_header()
        baseline = pdf.y + 14
        pdf.text(MARGIN + 5, baseline, pdf.fit(item.description, DESCRIPTION_WIDTH))
        pdf.right_text(QUANTITY_RIGHT, baseline, _format_quantity(item.quantity))
        pdf.right_text(UNIT_PRICE_RIGHT, baseline, format_pdf_currency(item.unit_price))
        pdf.right_text(AMOUNT_RIGHT - 5, baseline, format_pdf_currency(item.amount))
        pdf.y += ROW_HEIGHT
        pdf.rule(pdf.y)


def _draw_totals(pdf: _PdfWriter, record: InvoiceRecord) -> None:
    rows = [
        ("Subtotal:", format_pdf_currency(record.subtotal), False),
        (f"Tax ({record.tax_rate:g}%):", format_pdf_currency(record.tax_amount), False),
        ("Total:", format_pdf_currency(record.total), True),
    ]
    pdf.ensure_space(len(rows) * 18 + 20)
    pdf.y += 20
    for label, value, bold in rows:
        pdf.right_text(UNIT_PRICE_RIGHT, pdf.y, label, bold=bold)
        pdf.right_text(AMOUNT_RIGHT - 5, pdf.y, value, bold=bold)
        pdf.y += 18


def _draw_notes(pdf: _PdfWriter, record: InvoiceRecord) -> None:
    if not record.notes.strip():
        return
    lines = pdf.wrap(record.notes.strip(), PAGE_WIDTH - 2 * MARGIN)
    pdf.ensure_space(30)
    pdf.y += 20
    pdf.text(MARGIN, pdf.y, "Notes:", bold=True)
    for line in lines:
        pdf.y += 14
        if pdf.ensure_space(14):
            pdf.y += 14
        pdf.text(MARGIN, pdf.y, line, color=MUTED)


def encode_pdf(
    record: InvoiceRecord,
    *,
    seller_block: tuple[str, ...] = DEFAULT_SELLER_BLOCK,
) -> bytes:
    fitz = _load_renderer()
    pdf: _PdfWriter | None = None
    try:
        pdf = _PdfWriter(fitz)
        _draw_heading(pdf, record)
        _draw_parties(pdf, record, seller_block)
        _draw_items(pdf, record)
        _draw_totals(pdf, record)
        _draw_notes(pdf, record)
        data = pdf.finish()
    except Exception as exc:  # noqa: BLE001
        raise ExportError(f"Failed to generate PDF: {exc}", code="pdf_failed") from exc
    finally:
        if pdf is not None:
            pdf.close()
    logger.debug("Rendered PDF for invoice %s (%d bytes)", record.invoice_number, len(data))
    return data


def encode(
    record: InvoiceRecord,
    fmt: ExportFormat,
    *,
    seller_block: tuple[str, ...] = DEFAULT_SELLER_BLOCK,
) -> bytes:
    if fmt == "json":
        return encode_json(record).encode("utf-8")
    if fmt == "pdf":
        return encode_pdf(record, seller_block=seller_block)
    raise ValueError(f"Unsupported export format: {fmt}")


def write_download(
    record: InvoiceRecord,
    fmt: ExportFormat,
    directory: str | Path,
    *,
    seller_block: tuple[str, ...] = DEFAULT_SELLER_BLOCK,
) -> Path:
    target_dir = Path(directory)
    target = target_dir / export_filename(record, fmt)
    data = encode(record, fmt, seller_block=seller_block)
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as exc:
        raise ExportError(f"Could not write {target}: {exc}", code="write_failed") from exc
    return target


def open_pdf_preview(
    record: InvoiceRecord,
    *,
    seller_block: tuple[str, ...] = DEFAULT_SELLER_BLOCK,
) -> TransientResource:
    return TransientResource(
        encode_pdf(record, seller_block=seller_block),
        suffix=".pdf",
        media_type=MEDIA_TYPES["pdf"],
    )
