from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any

from invoice_mate.config import Settings
from invoice_mate.credential_store import CredentialStore
from invoice_mate.errors import UploadRejectedError
from invoice_mate.export_service import ExportFormat, open_pdf_preview, write_download
from invoice_mate.extraction_service import OpenAIVisionClient, VisionClient, extract_invoice
from invoice_mate.logger import configure_logging, log_invoice_event
from invoice_mate.normalization import ExtractionNormalizer, to_number
from invoice_mate.resources import ResourceRegistry, TransientResource
from invoice_mate.sample_data import placeholder_invoice
from invoice_mate.totals import recompute
from invoice_mate.upload import UploadedImage, read_upload
from invoice_mate.validation import errors_by_field, validate
from schemas.invoice_schema import InvoiceRecord, LineItem, ProcessingStatus, ValidationIssue

logger = logging.getLogger(__name__)

HEADER_FIELDS = {
    "invoiceNumber": "invoice_number",
    "date": "date",
    "dueDate": "due_date",
    "customerName": "customer_name",
    "customerAddress": "customer_address",
    "customerEmail": "customer_email",
    "notes": "notes",
    "taxRate": "tax_rate",
}

ITEM_FIELDS = {
    "description": "description",
    "quantity": "quantity",
    "unitPrice": "unit_price",
}

DERIVED_FIELDS = {"items", "subtotal", "taxAmount", "total", "amount"}


def parse_form_number(value: Any) -> float:
    """Numeric form input: anything unusable becomes 0."""
    number = to_number(value)
    return number if number is not None else 0.0


@dataclass
class SubmitResult:
    ok: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    path: Path | None = None

    @property
    def errors(self) -> dict[str, str]:
        return errors_by_field(self.issues)


class InvoiceFormSession:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: VisionClient | None = None,
        normalizer: ExtractionNormalizer | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._client = client
        self._normalizer = normalizer or ExtractionNormalizer()
        self._resources = ResourceRegistry()
        self._preview: TransientResource | None = None
        self.status = ProcessingStatus.IDLE
        self.record: InvoiceRecord | None = None
        self.issues: list[ValidationIssue] = []
        self.last_error: BaseException | None = None

    @property
    def uses_placeholder_data(self) -> bool:
        return self._client is None and not self.settings.has_api_key

    def _vision_client(self) -> VisionClient:
        if self._client is None:
            self._client = OpenAIVisionClient.from_settings(self.settings)
        return self._client

    def _set_status(self, status: ProcessingStatus) -> None:
        self.status = status
        log_invoice_event(logger, logging.DEBUG, "Status changed", stage="upload", status=status.value)

    async def upload(self, file_path: str | Path) -> InvoiceRecord:
        if self.status.is_busy:
            raise UploadRejectedError(
                "An invoice is already being processed", code="busy"
            )

        started = time.monotonic()
        previous_status = self.status
        self._set_status(ProcessingStatus.UPLOADING)
        try:
            image = await asyncio.to_thread(read_upload, file_path, self.settings)
        except UploadRejectedError as exc:
            self.status = previous_status
            log_invoice_event(
                logger,
                logging.WARNING,
                f"Upload rejected: {exc}",
                stage="upload",
                outcome="rejected",
                error_code=exc.code,
            )
            raise
        except BaseException as exc:
            self._fail(exc, stage="upload", started=started)
            raise

        try:
            await asyncio.sleep(self.settings.upload_delay_seconds)
            self._set_status(ProcessingStatus.PROCESSING)
            record = await self._extract(image)
        except BaseException as exc:
            self._fail(exc, stage="extraction", started=started)
            raise

        self.load_record(record)
        self._set_status(ProcessingStatus.COMPLETE)
        log_invoice_event(
            logger,
            logging.INFO,
            "Invoice data extracted",
            stage="extraction",
            invoice_number=record.invoice_number,
            status=self.status.value,
            outcome="placeholder" if self.uses_placeholder_data else "extracted",
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        return record

    def _fail(self, exc: BaseException, *, stage: str, started: float) -> None:
        """Record a failed upload and move out of the busy states."""
        self.last_error = exc
        self._set_status(ProcessingStatus.ERROR)
        if not isinstance(exc, Exception):
            return
        log_invoice_event(
            logger,
            logging.ERROR,
            f"Extraction failed: {exc}",
            stage=stage,
            status=self.status.value,
            outcome="failed",
            error_code=getattr(exc, "code", type(exc).__name__),
            latency_ms=int((time.monotonic() - started) * 1000),
        )

    async def _extract(self, image: UploadedImage) -> InvoiceRecord:
        if self.uses_placeholder_data:
            await asyncio.sleep(self.settings.processing_delay_seconds)
            return placeholder_invoice()

        client = self._vision_client()
        raw = await asyncio.to_thread(
            extract_invoice,
            image.data,
            image.mime_type,
            client=client,
            model_name=self.settings.model_name,
        )
        record = self._normalizer.normalize(raw)
        log_invoice_event(
            logger,
            logging.DEBUG,
            f"Normalized {len(record.items)} line item(s)",
            stage="normalization",
            invoice_number=record.invoice_number,
        )
        return record

    def load_record(self, record: InvoiceRecord) -> None:
        self.record = record.model_copy(deep=True)
        self.issues = []
        self.last_error = None

    def _require_record(self) -> InvoiceRecord:
        if self.record is None:
            raise RuntimeError("No invoice is loaded")
        return self.record

    def update_field(self, name: str, value: Any) -> None:
        record = self._require_record()
        if name in DERIVED_FIELDS:
            raise ValueError(f"{name} is derived and cannot be edited directly")
        if name not in HEADER_FIELDS:
            raise KeyError(name)

        if name == "taxRate":
            record.tax_rate = parse_form_number(value)
            self.record = recompute(record)
            return
        setattr(record, HEADER_FIELDS[name], "" if value is None else str(value))

    def update_item(self, index: int, name: str, value: Any) -> None:
        record = self._require_record()
        if name not in ITEM_FIELDS:
            raise KeyError(name)
        item = record.items[index]
        if name == "description":
            item.description = "" if value is None else str(value)
        else:
            setattr(item, ITEM_FIELDS[name], parse_form_number(value))
        self.record = recompute(record)

    def add_item(self) -> LineItem:
        record = self._require_record()
        item = LineItem(description="", quantity=1.0, unit_price=0.0, amount=0.0)
        record.items.append(item)
        self.record = recompute(record)
        return self.record.items[-1]

    def remove_item(self, index: int) -> None:
        record = self._require_record()
        if len(record.items) == 1:
            raise ValueError("Invoice must have at least one item")
        del record.items[index]
        self.record = recompute(record)

    def error_for(self, field_name: str) -> str | None:
        return errors_by_field(self.issues).get(field_name)

    def submit(self, fmt: ExportFormat = "json", directory: str | Path = ".") -> SubmitResult:
        record = self._require_record()
        self.issues = validate(record)
        if self.issues:
            log_invoice_event(
                logger,
                logging.INFO,
                f"Please fix {len(self.issues)} error{'s' if len(self.issues) > 1 else ''} in the form",
                stage="validation",
                invoice_number=record.invoice_number,
                outcome="invalid",
            )
            return SubmitResult(ok=False, issues=list(self.issues))

        path = write_download(record, fmt, directory, seller_block=self.settings.seller_block)
        log_invoice_event(
            logger,
            logging.INFO,
            f"Invoice exported as {fmt.upper()}",
            stage="export",
            invoice_number=record.invoice_number,
            outcome="written",
        )
        return SubmitResult(ok=True, path=path)

    def download(self, fmt: ExportFormat, directory: str | Path = ".") -> Path:
        record = self._require_record()
        return write_download(record, fmt, directory, seller_block=self.settings.seller_block)

    def preview_pdf(self) -> TransientResource:
        record = self._require_record()
        resource = open_pdf_preview(record, seller_block=self.settings.seller_block)
        self.close_preview()
        self._preview = self._resources.track(resource)
        return resource

    def close_preview(self) -> None:
        if self._preview is not None:
            self._resources.release(self._preview)
            self._preview = None

    def close(self) -> None:
        self._preview = None
        self._resources.release_all()

    async def __aenter__(self) -> "InvoiceFormSession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __enter__(self) -> "InvoiceFormSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def open_session(
    settings: Settings | None = None,
    *,
    credential_store: CredentialStore | None = None,
    client: VisionClient | None = None,
) -> InvoiceFormSession:
    """Configure logging and start a session, taking a stored API key when none is set."""
    active = settings or Settings.create()
    if not active.has_api_key and credential_store is not None:
        active = active.with_api_key(credential_store.load())
    configure_logging(active.log_level)
    return InvoiceFormSession(active, client=client)
