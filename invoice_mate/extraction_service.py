from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Protocol

from invoice_mate.config import Settings
from invoice_mate.errors import ExtractionError

logger = logging.getLogger(__name__)


class VisionClient(Protocol):
    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        """Return raw model text expected to contain one JSON object."""


SCHEMA_DESCRIPTION = """{
  "invoiceNumber": "string",
  "date": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD",
  "customerName": "string",
  "customerAddress": "string, address parts separated by commas",
  "customerEmail": "string",
  "items": [
    {"description": "string", "quantity": number, "unitPrice": number, "amount": number}
  ],
  "subtotal": number,
  "taxRate": number (percentage, 0-100),
  "taxAmount": number,
  "total": number,
  "notes": "string"
}"""

SYSTEM_PROMPT = (
    "You are an invoice data extraction assistant. Read the invoice image and return "
    "one JSON object matching this schema:\n"
    f"{SCHEMA_DESCRIPTION}\n"
    "Use an empty string for unknown text fields and omit unknown numbers. "
    "Return only the JSON object."
)

USER_EXTRACTION_PROMPT = (
    "Extract all invoice information from this image, including every line item, "
    "and return it as JSON."
)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def image_data_uri(image: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _first_object_span(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_model_json(raw_text: str | None) -> dict[str, Any]:
    if not raw_text or not raw_text.strip():
        raise ExtractionError("Model returned an empty response", code="empty_response")

    fenced = _FENCED_BLOCK.search(raw_text)
    candidate = fenced.group(1).strip() if fenced else _first_object_span(raw_text)
    if not candidate:
        raise ExtractionError("No JSON object found in model response", code="invalid_json")

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionError("Model returned invalid JSON", code="invalid_json") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("Model output must be a JSON object", code="invalid_json_shape")
    return payload


class OpenAIVisionClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ExtractionError("An API key is required for extraction", code="missing_api_key")
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise ExtractionError(
                "openai package is required for vision extraction", code="missing_dependency"
            ) from exc
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIVisionClient":
        if not settings.api_key:
            raise ExtractionError("An API key is required for extraction", code="missing_api_key")
        return cls(
            settings.api_key,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def extract_json(self, image: bytes, mime_type: str, model_name: str, prompt: str) -> str:
        from openai import OpenAIError

        try:
            response = self._client.chat.completions.create(
                model=model_name,
                temperature=0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image_data_uri(image, mime_type)}},
                        ],
                    },
                ],
            )
        except OpenAIError as exc:
            raise ExtractionError(
                f"Vision API request failed: {exc}", code="provider_request_failed"
            ) from exc

        if not response.choices:
            raise ExtractionError("Vision API returned no choices", code="empty_response")
        text = response.choices[0].message.content
        if not text:
            raise ExtractionError("Vision API returned an empty response", code="empty_response")
        return text


def extract_invoice(
    image: bytes,
    mime_type: str,
    *,
    client: VisionClient,
    model_name: str,
) -> dict[str, Any]:
    text = client.extract_json(image, mime_type, model_name, USER_EXTRACTION_PROMPT)
    payload = parse_model_json(text)
    logger.debug("Model returned %d top-level fields", len(payload))
    return payload
