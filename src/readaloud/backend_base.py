"""
Synthesis backend abstraction.

Two kinds of backend exist. A remote backend renders paragraph text into a
cacheable audio payload that the session plays through an `AudioPlayer`. A
local backend owns an utterance primitive and speaks text directly, reporting
its lifecycle through `PlaybackEvent` objects. The session only branches on
`SynthesisBackend.is_remote`; everything else is backend-agnostic.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol


@dataclass(frozen=True)
class AudioResource:
    """A locally playable rendered paragraph, named `{book_id}_{index}`."""

    resource_id: str
    path: Path
    byte_len: int


def resource_name(book_id: str, index: int) -> str:
    return f"{book_id}_{index}"


class EventKind(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    FINISHED = "finished"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PlaybackEvent:
    """Lifecycle notification for the paragraph started under `token`."""

    kind: EventKind
    index: int
    token: int


EventListener = Callable[[PlaybackEvent], None]


class SynthesisBackend(abc.ABC):
    """Common base for remote and local synthesis strategies."""

    is_remote: bool = False

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Human-readable backend name (for logging)."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, child processes)."""


class RemoteBackend(SynthesisBackend):
    """Request/response renderer. Output is independent of the playback rate."""

    is_remote = True
    audio_suffix = ".wav"

    @abc.abstractmethod
    async def render(self, text: str) -> bytes:
        """Return the rendered audio payload for `text`.

        Every failure (network, auth, quota, malformed response) is raised as a
        `ProviderError` subclass.
        """


class LocalBackend(SynthesisBackend):
    """Utterance-driven speaker that emits lifecycle events instead of audio."""

    is_remote = False

    def __init__(self) -> None:
        self._listener: EventListener | None = None

    def set_listener(self, listener: EventListener | None) -> None:
        self._listener = listener

    def _emit(self, kind: EventKind, index: int, token: int) -> None:
        if self._listener is not None:
            self._listener(PlaybackEvent(kind=kind, index=index, token=token))

    @abc.abstractmethod
    async def speak(self, text: str, *, index: int, token: int, rate: float) -> None:
        """Start speaking `text`; returns once the utterance has started."""

    @abc.abstractmethod
    def pause(self) -> bool:
        """Pause the current utterance. Returns False when nothing is speaking."""

    @abc.abstractmethod
    def resume(self) -> bool:
        """Resume a paused utterance. Returns False when nothing is paused."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Cancel the current utterance, if any."""

    @property
    @abc.abstractmethod
    def is_paused(self) -> bool:
        ...

    @property
    @abc.abstractmethod
    def is_speaking(self) -> bool:
        ...

    def set_rate(self, rate: float) -> bool:
        """Rate changes cannot reach an utterance in flight; they apply next time."""
        return False


class AudioPlayer(Protocol):
    """Protocol describing how the session drives playback of rendered audio."""

    @property
    def has_item(self) -> bool: ...

    @property
    def ended(self) -> bool: ...

    @property
    def is_playing(self) -> bool: ...

    def load(self, resource: AudioResource, on_finished: Callable[[], None]) -> None: ...

    def play(self, rate: float) -> None: ...

    def pause(self) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...
