from __future__ import annotations

import json
import logging

import pytest

from invoice_mate.logger import JsonFormatter, configure_logging, log_invoice_event
from invoice_mate.resources import ResourceRegistry, TransientResource


def test_json_formatter_includes_invoice_fields() -> None:
    logger = logging.getLogger("test-observability")
    record = logger.makeRecord(
        name=logger.name,
        level=logging.INFO,
        fn="test",
        lno=1,
        msg="extracted",
        args=(),
        exc_info=None,
        extra={
            "invoice_number": "INV-1",
            "stage": "extraction",
            "latency_ms": 120,
            "outcome": "extracted",
        },
    )
    payload = json.loads(JsonFormatter().format(record))
    assert payload["invoice_number"] == "INV-1"
    assert payload["stage"] == "extraction"
    assert payload["latency_ms"] == 120
    assert payload["outcome"] == "extracted"
    assert "error_code" not in payload


def test_log_invoice_event_passes_extra(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("test-invoice-event")
    with caplog.at_level(logging.INFO, logger=logger.name):
        log_invoice_event(
            logger,
            logging.WARNING,
            "Upload rejected",
            stage="upload",
            error_code="file_too_large",
        )
    entry = caplog.records[-1]
    assert entry.stage == "upload"
    assert entry.error_code == "file_too_large"
    assert not hasattr(entry, "invoice_number")


def test_configure_logging_installs_json_formatter() -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    root.handlers = []
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_registry_releases_all_resources() -> None:
    registry = ResourceRegistry()
    first = registry.track(TransientResource(b"a", suffix=".bin", media_type="application/octet-stream"))
    second = registry.track(TransientResource(b"b", suffix=".bin", media_type="application/octet-stream"))
    paths = [first.path, second.path]
    assert registry.open_count == 2

    registry.release(first)
    assert registry.open_count == 1
    registry.release_all()

    assert registry.open_count == 0
    assert all(not p.exists() for p in paths)
    with pytest.raises(RuntimeError, match="released"):
        _ = second.path
