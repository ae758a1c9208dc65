from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class TransientResource:
    """A temporary file exposed for preview until it is released."""

    def __init__(self, data: bytes, *, suffix: str, media_type: str) -> None:
        fd, name = tempfile.mkstemp(prefix="invoice_mate_", suffix=suffix)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        self._path = Path(name)
        self.media_type = media_type
        self.size = len(data)
        self._released = False

    @property
    def path(self) -> Path:
        if self._released:
            raise RuntimeError("Resource has been released")
        return self._path

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    @property
    def released(self) -> bool:
        return self._released

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._path.unlink(missing_ok=True)
        logger.debug("Released transient resource %s", self._path.name)

    def __enter__(self) -> "TransientResource":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class ResourceRegistry:
    def __init__(self) -> None:
        self._open: list[TransientResource] = []

    def track(self, resource: TransientResource) -> TransientResource:
        self._open.append(resource)
        return resource

    def release(self, resource: TransientResource) -> None:
        resource.release()
        if resource in self._open:
            self._open.remove(resource)

    def release_all(self) -> None:
        while self._open:
            self._open.pop().release()

    @property
    def open_count(self) -> int:
        return len(self._open)
