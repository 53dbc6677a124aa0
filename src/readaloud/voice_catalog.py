"""
Google voice catalog retrieval, caching and lookup.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from pathlib import Path
from typing import Callable, Iterable

import requests

CACHE_TTL = timedelta(hours=24)
API_URL = "https://texttospeech.googleapis.com/v1/voices"
CACHE_FILENAME = "voices.json"

PRESET_VOICES: list[dict[str, object]] = [
    {"voice_id": "en-US-Journey-D", "name": "Journey (Male)", "language_codes": ["en-US"]},
    {"voice_id": "en-US-Journey-F", "name": "Journey (Female)", "language_codes": ["en-US"]},
    {"voice_id": "en-US-Neural2-A", "name": "Neural2 A (Male)", "language_codes": ["en-US"]},
    {"voice_id": "en-US-Neural2-C", "name": "Neural2 C (Female)", "language_codes": ["en-US"]},
    {"voice_id": "en-US-Neural2-F", "name": "Neural2 F (Female)", "language_codes": ["en-US"]},
    {"voice_id": "en-US-Wavenet-D", "name": "WaveNet D (Male)", "language_codes": ["en-US"]},
]


def fetch_voices(
    api_key: str | None,
    *,
    cache_dir: Path,
    language_code: str | None = None,
    force_refresh: bool = False,
    requester: Callable[[str, str | None], list[dict[str, object]]] | None = None,
) -> list[dict[str, object]]:
    cache_path = Path(cache_dir) / CACHE_FILENAME

    if not force_refresh:
        cached = _load_cache(cache_path)
        if cached is not None:
            return cached

    if api_key is None:
        raise ValueError("API key is required when refresh is requested or cache is empty.")

    fetcher = requester or _fetch_from_api
    voices = fetcher(api_key, language_code)
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    _write_cache(cache_path, voices)
    return voices


def fuzzy_match(query: str, voices: Iterable[dict[str, object]]) -> str | None:
    query_lower = query.strip().lower()
    if not query_lower:
        return None

    voices = list(voices)
    for voice in voices:
        voice_id = str(voice.get("voice_id", ""))
        name = str(voice.get("name", ""))
        if voice_id.lower() == query_lower or name.lower() == query_lower:
            return voice_id

    best_id: str | None = None
    best_score = 0.0
    for voice in voices:
        voice_id = str(voice.get("voice_id", ""))
        score = max(_score(query_lower, str(voice.get("name", ""))), _score(query_lower, voice_id))
        if score > best_score:
            best_score = score
            best_id = voice_id

    return best_id if best_score >= 0.5 else None


def _score(query_lower: str, candidate: str) -> float:
    candidate_lower = candidate.lower()
    if not candidate_lower:
        return 0.0
    if query_lower in candidate_lower:
        # Short queries such as "journey" should still count as a match.
        return max(len(query_lower) / len(candidate_lower), 0.5)
    return SequenceMatcher(None, query_lower, candidate_lower).ratio()


def _load_cache(path: Path) -> list[dict[str, object]] | None:
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None

    timestamp_raw = data.get("fetched_at")
    voices = data.get("voices")
    if timestamp_raw is None or not isinstance(voices, list):
        return None

    try:
        fetched_at = datetime.fromisoformat(timestamp_raw)
    except ValueError:
        return None

    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)

    if datetime.now(timezone.utc) - fetched_at > CACHE_TTL:
        return None

    return voices


def _write_cache(path: Path, voices: list[dict[str, object]]) -> None:
    payload = {
        "fetched_at": datetime.now(timezone.utc).isoformat(),
        "voices": voices,
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _normalize(raw: dict[str, object]) -> dict[str, object]:
    name = str(raw.get("name", ""))
    return {
        "voice_id": name,
        "name": name,
        "language_codes": list(raw.get("languageCodes") or []),
        "gender": raw.get("ssmlGender"),
        "sample_rate": raw.get("naturalSampleRateHertz"),
    }


def _fetch_from_api(api_key: str, language_code: str | None) -> list[dict[str, object]]:
    params = {"key": api_key}
    if language_code:
        params["languageCode"] = language_code
    response = requests.get(API_URL, params=params, timeout=10)
    response.raise_for_status()
    payload = response.json()
    voices = payload.get("voices")
    if not isinstance(voices, list):
        return []
    return [_normalize(voice) for voice in voices if isinstance(voice, dict)]
