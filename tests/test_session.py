from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from invoice_mate.config import Settings
from invoice_mate.credential_store import CredentialStore
from invoice_mate.errors import ExtractionError, UploadRejectedError
from invoice_mate.sample_data import SAMPLE_INVOICE_NUMBER, placeholder_invoice
from invoice_mate.session import InvoiceFormSession, open_session, parse_form_number
from schemas.invoice_schema import ProcessingStatus

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

EXTRACTED = json.dumps(
    {
        "invoiceNumber": "INV-500",
        "date": "5/3/24",
        "customerName": "Globex",
        "customerEmail": "billing@globex.example",
        "items": [{"description": "Design", "quantity": 2, "unitPrice": 100}],
        "taxRate": 10,
    }
)


class _FakeVisionClient:
    def __init__(self, output: str) -> None:
        self._output = output
        self.calls = 0

    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        self.calls += 1
        return self._output


class _BlockingVisionClient:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.started = threading.Event()

    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        self.started.set()
        self.release.wait(timeout=5)
        return EXTRACTED


class _FailingVisionClient:
    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        raise ExtractionError("provider down", code="provider_request_failed")


class _FlakyVisionClient:
    def __init__(self) -> None:
        self.calls = 0

    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("connection reset")
        return EXTRACTED


@pytest.fixture
def settings() -> Settings:
    return Settings.create(upload_delay_seconds=0, processing_delay_seconds=0)


@pytest.fixture
def image_path(tmp_path: Path) -> Path:
    path = tmp_path / "invoice.png"
    path.write_bytes(PNG_BYTES)
    return path


@pytest.mark.asyncio
async def test_upload_extracts_and_normalizes(settings: Settings, image_path: Path) -> None:
    client = _FakeVisionClient(EXTRACTED)
    session = InvoiceFormSession(settings, client=client)

    record = await session.upload(image_path)

    assert session.status is ProcessingStatus.COMPLETE
    assert client.calls == 1
    assert record.invoice_number == "INV-500"
    assert record.date == "2024-03-05"
    assert record.due_date == "2024-04-04"
    assert record.items[0].amount == 200
    assert record.total == 220
    assert session.record == record


@pytest.mark.asyncio
async def test_upload_without_api_key_uses_placeholder_data(settings: Settings, image_path: Path) -> None:
    session = InvoiceFormSession(settings)
    assert session.uses_placeholder_data

    record = await session.upload(image_path)

    assert record.invoice_number == SAMPLE_INVOICE_NUMBER
    assert record.customer_name == "Acme Corporation"
    assert record.total == pytest.approx(1773.75)
    assert session.status is ProcessingStatus.COMPLETE


@pytest.mark.asyncio
async def test_upload_failure_propagates_and_sets_error(settings: Settings, image_path: Path) -> None:
    session = InvoiceFormSession(settings, client=_FailingVisionClient())

    with pytest.raises(ExtractionError):
        await session.upload(image_path)

    assert session.status is ProcessingStatus.ERROR
    assert session.record is None
    assert session.last_error is not None
    assert session.last_error.code == "provider_request_failed"


@pytest.mark.asyncio
async def test_unexpected_client_error_does_not_lock_the_session(settings: Settings, image_path: Path) -> None:
    client = _FlakyVisionClient()
    session = InvoiceFormSession(settings, client=client)

    with pytest.raises(ConnectionError):
        await session.upload(image_path)
    assert session.status is ProcessingStatus.ERROR
    assert isinstance(session.last_error, ConnectionError)

    record = await session.upload(image_path)
    assert record.invoice_number == "INV-500"
    assert session.status is ProcessingStatus.COMPLETE
    assert session.last_error is None


@pytest.mark.asyncio
async def test_unexpected_read_error_sets_error_status(
    settings: Settings, image_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _broken(*args: object) -> None:
        raise RuntimeError("disk gone")

    monkeypatch.setattr("invoice_mate.session.read_upload", _broken)
    session = InvoiceFormSession(settings, client=_FakeVisionClient(EXTRACTED))

    with pytest.raises(RuntimeError, match="disk gone"):
        await session.upload(image_path)
    assert session.status is ProcessingStatus.ERROR


@pytest.mark.asyncio
async def test_cancelled_upload_leaves_busy_state(image_path: Path) -> None:
    session = InvoiceFormSession(
        Settings.create(upload_delay_seconds=5, processing_delay_seconds=0),
        client=_FakeVisionClient(EXTRACTED),
    )
    task = asyncio.create_task(session.upload(image_path))
    await asyncio.sleep(0.1)
    assert session.status.is_busy

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.status is ProcessingStatus.ERROR
    assert not session.status.is_busy


@pytest.mark.asyncio
async def test_malformed_model_output_is_an_extraction_failure(settings: Settings, image_path: Path) -> None:
    session = InvoiceFormSession(settings, client=_FakeVisionClient("Sorry, I cannot help."))
    with pytest.raises(ExtractionError) as exc_info:
        await session.upload(image_path)
    assert exc_info.value.code == "invalid_json"
    assert session.status is ProcessingStatus.ERROR


@pytest.mark.asyncio
async def test_rejected_upload_never_starts_processing(settings: Settings, tmp_path: Path) -> None:
    text_file = tmp_path / "notes.txt"
    text_file.write_text("hello", encoding="utf-8")
    client = _FakeVisionClient(EXTRACTED)
    session = InvoiceFormSession(settings, client=client)

    with pytest.raises(UploadRejectedError) as exc_info:
        await session.upload(text_file)

    assert exc_info.value.code == "unsupported_type"
    assert session.status is ProcessingStatus.IDLE
    assert client.calls == 0


@pytest.mark.asyncio
async def test_second_upload_is_rejected_while_busy(settings: Settings, image_path: Path) -> None:
    client = _BlockingVisionClient()
    session = InvoiceFormSession(settings, client=client)

    first = asyncio.create_task(session.upload(image_path))
    while not client.started.is_set():
        await asyncio.sleep(0.01)
    assert session.status is ProcessingStatus.PROCESSING

    with pytest.raises(UploadRejectedError) as exc_info:
        await session.upload(image_path)
    assert exc_info.value.code == "busy"

    client.release.set()
    record = await first
    assert record.invoice_number == "INV-500"


@pytest.mark.asyncio
async def test_edits_recompute_totals(settings: Settings, image_path: Path) -> None:
    session = InvoiceFormSession(settings, client=_FakeVisionClient(EXTRACTED))
    await session.upload(image_path)

    session.update_item(0, "quantity", "3")
    assert session.record is not None
    assert session.record.items[0].amount == 300
    assert session.record.subtotal == 300
    assert session.record.total == 330

    session.update_field("taxRate", "20")
    assert session.record.tax_amount == 60
    assert session.record.total == 360

    session.update_item(0, "unitPrice", "abc")
    assert session.record.items[0].unit_price == 0
    assert session.record.total == 0


def test_add_and_remove_items(settings: Settings) -> None:
    session = InvoiceFormSession(settings)
    session.load_record(placeholder_invoice())
    assert session.record is not None

    new_item = session.add_item()
    assert len(session.record.items) == 3
    assert new_item.quantity == 1
    assert new_item.unit_price == 0
    assert new_item.id not in {"1", "2"}

    session.remove_item(0)
    session.remove_item(0)
    assert session.record.total == 0
    with pytest.raises(ValueError, match="at least one item"):
        session.remove_item(0)


def test_derived_fields_cannot_be_edited(settings: Settings) -> None:
    session = InvoiceFormSession(settings)
    session.load_record(placeholder_invoice())
    with pytest.raises(ValueError):
        session.update_field("total", 5)
    with pytest.raises(KeyError):
        session.update_field("color", "blue")
    with pytest.raises(KeyError):
        session.update_item(0, "amount", 5)


def test_submit_blocks_export_when_invalid(settings: Settings, tmp_path: Path) -> None:
    session = InvoiceFormSession(settings)
    session.load_record(placeholder_invoice())
    session.update_field("invoiceNumber", "")
    session.update_field("customerEmail", "not-an-email")
    session.update_item(0, "quantity", 0)

    result = session.submit("json", tmp_path)

    assert not result.ok
    assert result.path is None
    assert set(result.errors) == {"invoiceNumber", "customerEmail", "items[0].quantity"}
    assert session.error_for("customerEmail") == "Customer email is invalid"
    assert list(tmp_path.iterdir()) == []

    session.update_field("invoiceNumber", "INV-9")
    session.update_field("customerEmail", "")
    session.update_item(0, "quantity", 1)
    result = session.submit("pdf", tmp_path)
    assert result.ok
    assert result.path == tmp_path / "invoice_INV-9.pdf"
    assert result.path.read_bytes().startswith(b"%PDF")


def test_preview_replaces_and_releases_previous(settings: Settings) -> None:
    with InvoiceFormSession(settings) as session:
        session.load_record(placeholder_invoice())
        first = session.preview_pdf()
        second = session.preview_pdf()
        assert first.released
        assert not second.released
        second_path = second.path
    assert second.released
    assert not second_path.exists()


@pytest.mark.parametrize(("value", "expected"), [("12.5", 12.5), ("", 0.0), ("x", 0.0), (None, 0.0), (4, 4.0)])
def test_parse_form_number(value: object, expected: float) -> None:
    assert parse_form_number(value) == expected


def test_open_session_uses_stored_key_and_configures_logging(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    levels: list[str] = []
    monkeypatch.setattr("invoice_mate.session.configure_logging", levels.append)
    store = CredentialStore(tmp_path / "credentials.json")
    store.save("sk-stored")

    session = open_session(Settings.create(log_level="warning"), credential_store=store)

    assert session.settings.api_key == "sk-stored"
    assert not session.uses_placeholder_data
    assert levels == ["WARNING"]


def test_open_session_keeps_explicit_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("invoice_mate.session.configure_logging", lambda level: None)
    store = CredentialStore(tmp_path / "credentials.json")
    store.save("sk-stored")

    session = open_session(Settings.create(api_key="sk-explicit"), credential_store=store)
    assert session.settings.api_key == "sk-explicit"


def test_open_session_without_any_key_uses_placeholder(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("invoice_mate.session.configure_logging", lambda level: None)
    session = open_session(credential_store=CredentialStore(tmp_path / "missing.json"))
    assert session.uses_placeholder_data
