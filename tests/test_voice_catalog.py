from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from readaloud import voice_catalog
from readaloud.voice_catalog import PRESET_VOICES, fetch_voices, fuzzy_match


def test_cache_logic_returns_fresh_cache(tmp_path):
    cache_file = tmp_path / "voices.json"
    payload = {
        "fetched_at": datetime.now(timezone.utc).isoformat(),
        "voices": [{"voice_id": "en-US-Cached-A", "name": "en-US-Cached-A"}],
    }
    cache_file.write_text(json.dumps(payload), encoding="utf-8")

    result = fetch_voices(None, cache_dir=tmp_path)
    assert result == payload["voices"]


def test_stale_cache_without_key_raises(tmp_path):
    cache_file = tmp_path / "voices.json"
    payload = {
        "fetched_at": (datetime.now(timezone.utc) - timedelta(days=2)).isoformat(),
        "voices": [],
    }
    cache_file.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError):
        fetch_voices(None, cache_dir=tmp_path)


def test_force_refresh_updates_cache(tmp_path):
    cache_file = tmp_path / "voices.json"
    stale_payload = {
        "fetched_at": (datetime.now(timezone.utc) - timedelta(days=2)).isoformat(),
        "voices": [{"voice_id": "old", "name": "Old Voice"}],
    }
    cache_file.write_text(json.dumps(stale_payload), encoding="utf-8")

    new_voices = [{"voice_id": "en-US-Fresh-A", "name": "en-US-Fresh-A"}]

    def requester(api_key: str, language_code):
        assert api_key == "secret"
        assert language_code == "en-US"
        return new_voices

    result = fetch_voices(
        "secret",
        force_refresh=True,
        cache_dir=tmp_path,
        language_code="en-US",
        requester=requester,
    )
    assert result == new_voices

    stored = json.loads(cache_file.read_text(encoding="utf-8"))
    assert stored["voices"] == new_voices


def test_api_fetch_normalizes_google_payload(monkeypatch):
    calls = []

    class _Response:
        def raise_for_status(self):
            return None

        def json(self):
            return {
                "voices": [
                    {
                        "languageCodes": ["en-US"],
                        "name": "en-US-Neural2-F",
                        "ssmlGender": "FEMALE",
                        "naturalSampleRateHertz": 24000,
                    }
                ]
            }

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params))
        return _Response()

    monkeypatch.setattr(voice_catalog.requests, "get", fake_get)
    voices = voice_catalog._fetch_from_api("secret", "en-US")

    assert calls == [(voice_catalog.API_URL, {"key": "secret", "languageCode": "en-US"})]
    assert voices == [
        {
            "voice_id": "en-US-Neural2-F",
            "name": "en-US-Neural2-F",
            "language_codes": ["en-US"],
            "gender": "FEMALE",
            "sample_rate": 24000,
        }
    ]


def test_fuzzy_match():
    assert fuzzy_match("en-US-Neural2-C", PRESET_VOICES) == "en-US-Neural2-C"
    assert fuzzy_match("journey (female)", PRESET_VOICES) == "en-US-Journey-F"
    assert fuzzy_match("WaveNet", PRESET_VOICES) == "en-US-Wavenet-D"
    assert fuzzy_match("zzzz", PRESET_VOICES) is None
    assert fuzzy_match("   ", PRESET_VOICES) is None
