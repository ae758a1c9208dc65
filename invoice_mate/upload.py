from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from invoice_mate.config import Settings
from invoice_mate.errors import UploadRejectedError

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)

_SUFFIXES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}


@dataclass(frozen=True)
class UploadedImage:
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def detect_mime_type(data: bytes, file_name: str) -> str | None:
    for signature, mime in _SIGNATURES:
        if data.startswith(signature):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return _SUFFIXES.get(Path(file_name).suffix.lower())


def check_upload(data: bytes, file_name: str, settings: Settings) -> UploadedImage:
    if not data:
        raise UploadRejectedError("The selected file is empty", code="empty_file")

    mime = detect_mime_type(data, file_name)
    if mime is None or mime not in settings.allowed_mime_types:
        raise UploadRejectedError(
            "Please upload an image file (JPEG, PNG)", code="unsupported_type"
        )

    if len(data) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise UploadRejectedError(
            f"File is too large. Please upload an image smaller than {limit_mb}MB",
            code="file_too_large",
        )
    return UploadedImage(name=file_name, mime_type=mime, data=data)


def read_upload(file_path: str | Path, settings: Settings) -> UploadedImage:
    path = Path(file_path)
    if not path.is_file():
        raise UploadRejectedError(f"File not found: {path}", code="file_not_found")
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise UploadRejectedError(
            "Error reading file. Please try a different file.", code="read_failed"
        ) from exc
    # Oversized files are rejected before they are read.
    if size > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise UploadRejectedError(
            f"File is too large. Please upload an image smaller than {limit_mb}MB",
            code="file_too_large",
        )
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise UploadRejectedError(
            "Error reading file. Please try a different file.", code="read_failed"
        ) from exc
    return check_upload(data, path.name, settings)
