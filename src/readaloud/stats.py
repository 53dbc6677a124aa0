"""
Listening statistics: seconds of audible playback bucketed by local day.
"""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Callable

from .progress import format_duration

logger = logging.getLogger(__name__)

STATS_FILENAME = "stats.json"


class ListeningStats:
    def __init__(
        self,
        state_dir: str | Path | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.path = Path(state_dir) / STATS_FILENAME if state_dir is not None else None
        self._today = today
        self.daily: dict[str, float] = {}
        self.total_seconds = 0.0
        self._load()

    def record_seconds(self, seconds: float) -> None:
        if seconds <= 0:
            return
        key = self._today().isoformat()
        self.daily[key] = self.daily.get(key, 0.0) + seconds
        self.total_seconds += seconds
        self._save()

    @property
    def today(self) -> float:
        return self.daily.get(self._today().isoformat(), 0.0)

    @property
    def this_week(self) -> float:
        """The last seven days, today included."""
        current = self._today()
        return sum(
            self.daily.get((current - timedelta(days=offset)).isoformat(), 0.0)
            for offset in range(7)
        )

    @property
    def this_month(self) -> float:
        return self._sum_prefix(self._today().strftime("%Y-%m"))

    @property
    def this_year(self) -> float:
        return self._sum_prefix(self._today().strftime("%Y"))

    @property
    def ever(self) -> float:
        return self.total_seconds

    def summary(self) -> dict[str, str]:
        return {
            "today": format_duration(self.today),
            "week": format_duration(self.this_week),
            "month": format_duration(self.this_month),
            "year": format_duration(self.this_year),
            "ever": format_duration(self.ever),
        }

    def _sum_prefix(self, prefix: str) -> float:
        return sum(value for key, value in self.daily.items() if key.startswith(prefix))

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            daily = {str(key): float(value) for key, value in data.get("daily", {}).items()}
            total = float(data.get("total_seconds", sum(daily.values())))
        except (OSError, ValueError, TypeError, AttributeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable stats file %s: %s", self.path, exc)
            return
        self.daily = daily
        self.total_seconds = total

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps({"daily": self.daily, "total_seconds": self.total_seconds}, indent=2),
            encoding="utf-8",
        )
