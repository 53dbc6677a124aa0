"""
Persisted reader state: the preferred playback rate and per-book position.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import MAX_RATE, MIN_RATE

logger = logging.getLogger(__name__)

STATE_FILENAME = "library.json"


class StateStore:
    """Small JSON document under the state directory.

    Layout::

        {"rate": 1.25,
         "books": {"<book_id>": {"last_index": 12, "updated_at": "..."}}}
    """

    def __init__(self, state_dir: str | Path, *, default_rate: float = 1.0) -> None:
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / STATE_FILENAME
        self.default_rate = default_rate
        self._data = self._load()

    def get_rate(self) -> float:
        try:
            rate = float(self._data.get("rate", self.default_rate))
        except (TypeError, ValueError):
            return self.default_rate
        return min(max(rate, MIN_RATE), MAX_RATE)

    def set_rate(self, rate: float) -> None:
        self._data["rate"] = float(rate)
        self._save()

    def update_progress(self, book_id: str, index: int) -> None:
        books = self._data.setdefault("books", {})
        books[book_id] = {
            "last_index": int(index),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._save()

    def last_index(self, book_id: str) -> int | None:
        entry = self._data.get("books", {}).get(book_id)
        if not isinstance(entry, dict):
            return None
        try:
            return int(entry["last_index"])
        except (KeyError, TypeError, ValueError):
            return None

    def forget(self, book_id: str) -> None:
        if self._data.get("books", {}).pop(book_id, None) is not None:
            self._save()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.path)
