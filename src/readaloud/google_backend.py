"""
Google Cloud Text-to-Speech backend with optional simulation mode.

The backend supports two operating modes:
- **Simulated** (tests, `--simulate`): returns a deterministic tone per
  paragraph so the pipeline can be exercised without hitting the network.
- **Live**: posts to the `text:synthesize` endpoint and decodes the base64
  LINEAR16 payload.

Requests are always made at speaking rate 1.0 so cached audio can be reused
across rate changes; the player applies the listener's rate.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
from array import array

import requests

from .backend_base import RemoteBackend
from .errors import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimitError,
)
from .wav_io import pcm16_to_wav

logger = logging.getLogger(__name__)


class GoogleTTSBackend(RemoteBackend):
    BASE_URL = "https://texttospeech.googleapis.com"
    DEFAULT_SAMPLE_RATE = 24_000
    SIMULATED_SECONDS_PER_CHAR = 1.0 / 15.0
    SIMULATED_MAX_SECONDS = 2.0

    def __init__(
        self,
        *,
        api_key: str | None = None,
        voice_id: str = "en-US-Neural2-F",
        language_code: str = "en-US",
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        base_url: str = BASE_URL,
        simulate: bool = False,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive.")

        if not simulate and not api_key:
            raise ValueError("api_key is required when simulate=False.")

        self.api_key = api_key
        self.voice_id = voice_id
        self.language_code = language_code
        self.sample_rate = sample_rate
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.simulate = simulate
        self.render_calls = 0

        self._session = session
        self._session_owner = False

    @property
    def name(self) -> str:
        return "google/simulated" if self.simulate else f"google/{self.voice_id}"

    # ------------------------------------------------------------------ #
    # Public API

    async def render(self, text: str) -> bytes:
        self.render_calls += 1
        if self.simulate:
            return self._simulate_render(text)
        return await asyncio.to_thread(self._render_blocking, text)

    async def close(self) -> None:
        if self._session is not None and self._session_owner:
            self._session.close()
        self._session = None
        self._session_owner = False

    # ------------------------------------------------------------------ #
    # Live backend helpers

    def _ensure_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session_owner = True
            self._session.headers.update({"Content-Type": "application/json"})
        return self._session

    def _build_payload(self, text: str) -> dict[str, object]:
        return {
            "input": {"text": text},
            "voice": {"languageCode": self.language_code, "name": self.voice_id},
            "audioConfig": {
                "audioEncoding": "LINEAR16",
                "sampleRateHertz": self.sample_rate,
                "speakingRate": 1.0,
            },
        }

    def _render_blocking(self, text: str) -> bytes:
        session = self._ensure_session()
        url = f"{self.base_url}/v1/text:synthesize"

        try:
            response = session.post(
                url,
                params={"key": self.api_key},
                json=self._build_payload(text),
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectTimeout as exc:  # pragma: no cover - depends on network
            raise ProviderConnectionError("Timed out connecting to Google TTS.") from exc
        except requests.exceptions.ConnectionError as exc:  # pragma: no cover
            raise ProviderConnectionError("Unable to connect to Google TTS.") from exc
        except requests.exceptions.Timeout as exc:  # pragma: no cover
            raise ProviderNetworkError("Timed out waiting for Google TTS response.") from exc
        except requests.RequestException as exc:  # pragma: no cover
            raise ProviderNetworkError(str(exc)) from exc

        self._raise_for_status(response)
        return self._decode_audio(response)

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if status == 200:
            return
        if status in (401, 403):
            raise ProviderAuthError("Google TTS rejected the API key or the quota is exhausted.")
        if status == 429:
            retry_after = response.headers.get("retry-after")
            raise ProviderRateLimitError(
                retry_after=float(retry_after) if retry_after else None
            )
        if 500 <= status < 600:
            raise ProviderNetworkError(f"Google TTS upstream error (status {status}).")
        detail = response.text[:256]
        logger.error("Google TTS error %s: %s", status, detail)
        raise ProviderError(f"Google TTS request failed ({status}): {detail}")

    def _decode_audio(self, response: requests.Response) -> bytes:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Google TTS response is not JSON.") from exc

        content = payload.get("audioContent") if isinstance(payload, dict) else None
        if not isinstance(content, str) or not content:
            raise MalformedResponseError("Google TTS response has no audioContent.")

        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedResponseError("Google TTS audioContent is not valid base64.") from exc

    # ------------------------------------------------------------------ #
    # Simulation helpers

    def _simulate_render(self, text: str) -> bytes:
        payload = text.strip()
        seconds = min(
            self.SIMULATED_MAX_SECONDS,
            max(0.1, len(payload) * self.SIMULATED_SECONDS_PER_CHAR),
        )
        sample_count = int(self.sample_rate * seconds)
        freq = 220.0 + (sum(payload.encode("utf-8")) % 220)
        amplitude = 0.25 * 32767
        samples = array(
            "h",
            (
                int(amplitude * math.sin(2 * math.pi * freq * n / self.sample_rate))
                for n in range(sample_count)
            ),
        )
        return pcm16_to_wav(samples.tobytes(), self.sample_rate)
