from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

DEFAULT_MODEL = "gpt-4o"
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

DEFAULT_SELLER_BLOCK: tuple[str, ...] = (
    "Paperless Invoice Mate",
    "1 Market Street",
    "San Francisco, CA 94105",
    "billing@invoicemate.example",
)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _clean_optional(value: str | None) -> str | None:
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class Settings:
    api_key: str | None = None
    api_base_url: str | None = None
    model_name: str = DEFAULT_MODEL
    request_timeout_seconds: float = 60.0
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    allowed_mime_types: tuple[str, ...] = (
        "image/jpeg",
        "image/png",
    )
    upload_delay_seconds: float = 0.8
    processing_delay_seconds: float = 0.0
    log_level: str = "INFO"
    seller_block: tuple[str, ...] = DEFAULT_SELLER_BLOCK

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def __repr__(self) -> str:
        masked = "***" if self.api_key else None
        return (
            f"Settings(api_key={masked!r}, api_base_url={self.api_base_url!r}, "
            f"model_name={self.model_name!r}, max_upload_bytes={self.max_upload_bytes})"
        )

    @classmethod
    def create(cls, **overrides: Any) -> "Settings":
        unknown = set(overrides) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        settings = replace(cls(), **overrides)

        model_name = (settings.model_name or "").strip()
        if not model_name:
            raise ValueError("model_name must not be empty")

        if settings.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if settings.max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be positive")
        if settings.upload_delay_seconds < 0 or settings.processing_delay_seconds < 0:
            raise ValueError("Pacing delays must not be negative")

        allowed_mimes = tuple(
            v.strip().lower() for v in settings.allowed_mime_types if v and v.strip()
        )
        if not allowed_mimes:
            raise ValueError("allowed_mime_types must contain at least one mime type")
        non_images = [m for m in allowed_mimes if not m.startswith("image/")]
        if non_images:
            raise ValueError(f"Only image mime types can be accepted: {', '.join(non_images)}")

        log_level = settings.log_level.strip().upper()
        if log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(_LOG_LEVELS))}")

        return replace(
            settings,
            api_key=_clean_optional(settings.api_key),
            api_base_url=_clean_optional(settings.api_base_url),
            model_name=model_name,
            allowed_mime_types=allowed_mimes,
            log_level=log_level,
            seller_block=tuple(settings.seller_block),
        )

    def with_api_key(self, api_key: str | None) -> "Settings":
        return replace(self, api_key=_clean_optional(api_key))
