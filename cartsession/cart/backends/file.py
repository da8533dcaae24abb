from __future__ import annotations

import json
from pathlib import Path

from cartsession.cart.backends.base import SessionBackend
from cartsession.config import ensure_directories
from cartsession.logging.logger import get_logger

logger = get_logger("backends.file")


class JsonFileSessionBackend(SessionBackend):
    """Keeps every key as an entry of one JSON document on disk."""

    name = "file"

    def __init__(self, path: Path | None = None):
        self._path = path or ensure_directories().data_dir / "cart_session.json"

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("unreadable session file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): value for key, value in payload.items() if isinstance(value, str)}

    def _dump(self, records: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(records), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        records = self._load()
        records[key] = value
        self._dump(records)

    def remove(self, key: str) -> None:
        records = self._load()
        if records.pop(key, None) is not None:
            self._dump(records)
