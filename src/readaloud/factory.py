"""
Backend selection.

Remote synthesis is used only when it is the preferred engine and a usable
credential is present (or the remote backend runs in simulate mode). Anything
else falls back to the platform speech command.

Usage:
    selector = BackendSelector(config)
    session = PlaybackSession(selector, ...)
    selector.update(new_config); session.reconfigure()
"""

from __future__ import annotations

import logging
from typing import Callable

import requests

from .backend_base import SynthesisBackend
from .config import AppConfig
from .errors import BackendUnavailableError
from .google_backend import GoogleTTSBackend
from .local_backend import SystemSpeechBackend, detect_speech_command

logger = logging.getLogger(__name__)


def wants_remote(config: AppConfig) -> bool:
    return config.preferred_engine == "remote" and (
        config.has_valid_credential or config.simulate
    )


def create_backend(
    config: AppConfig,
    *,
    session: requests.Session | None = None,
    detect: Callable[[str | None], str | None] = detect_speech_command,
) -> SynthesisBackend:
    """Build the backend the configuration asks for."""
    if wants_remote(config):
        backend = _build_remote(config, session)
        logger.info("Synthesis backend: %s", backend.name)
        return backend

    if config.preferred_engine == "remote":
        logger.warning("Remote engine selected but GOOGLE_TTS_API_KEY not set; using local speech")

    local = _build_local(config, detect)
    if local is not None:
        logger.info("Synthesis backend: %s", local.name)
        return local

    raise BackendUnavailableError(
        "No speech backend available: set GOOGLE_TTS_API_KEY or install espeak-ng."
    )


def _build_remote(config: AppConfig, session: requests.Session | None) -> GoogleTTSBackend:
    return GoogleTTSBackend(
        api_key=config.api_key,
        voice_id=config.voice_id,
        language_code=config.language_code,
        timeout=config.timeout_ms / 1000.0,
        session=session,
        simulate=config.simulate,
    )


def _build_local(
    config: AppConfig,
    detect: Callable[[str | None], str | None],
) -> SystemSpeechBackend | None:
    command = detect(config.local_command)
    if command is None:
        if config.local_command:
            logger.warning("Speech command '%s' not found", config.local_command)
        return None
    return SystemSpeechBackend(
        command=command,
        voice=config.local_voice,
        base_wpm=config.local_base_wpm,
    )


class BackendSelector:
    """Callable backend factory that reuses the backend while its settings are unchanged."""

    def __init__(
        self,
        config: AppConfig,
        *,
        builder: Callable[[AppConfig], SynthesisBackend] = create_backend,
    ) -> None:
        self._config = config
        self._builder = builder
        self._backend: SynthesisBackend | None = None
        self._key: tuple | None = None

    @property
    def config(self) -> AppConfig:
        return self._config

    def update(self, config: AppConfig) -> None:
        self._config = config

    def __call__(self) -> SynthesisBackend:
        key = _selection_key(self._config)
        if self._backend is None or key != self._key:
            self._backend = self._builder(self._config)
            self._key = key
        return self._backend


def _selection_key(config: AppConfig) -> tuple:
    return (
        wants_remote(config),
        config.api_key,
        config.voice_id,
        config.language_code,
        config.simulate,
        config.local_command,
        config.local_voice,
        config.local_base_wpm,
    )
