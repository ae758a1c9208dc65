from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_PATH = Path.home() / ".invoice_mate" / "credentials.json"
_KEY_NAME = "openaiApiKey"


class CredentialStore:
    """User-local storage for the vision API key.

    Nothing reads from it implicitly: callers load the key and pass it on.
    """

    def __init__(self, path: str | Path = DEFAULT_CREDENTIAL_PATH) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable credential file %s", self._path)
            return None
        value = payload.get(_KEY_NAME) if isinstance(payload, dict) else None
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    def save(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("Please enter an API key")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({_KEY_NAME: api_key.strip()}), encoding="utf-8")
        os.chmod(self._path, 0o600)
        logger.info("API key saved to %s", self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
        logger.info("API key removed from %s", self._path)
