from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from readaloud.backend_base import AudioResource, EventKind, LocalBackend, RemoteBackend
from readaloud.cache import RenderCache
from readaloud.session import PlaybackSession


async def settle(rounds: int = 50) -> None:
    """Let queued tasks, callbacks and events run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeRemoteBackend(RemoteBackend):
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.closed = False

    @property
    def name(self) -> str:
        return "fake-remote"

    async def render(self, text: str) -> bytes:
        self.calls.append(text)
        gate = self.gates.get(text)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(text)
        if failure is not None:
            raise failure
        return f"audio:{text}".encode("utf-8")

    async def close(self) -> None:
        self.closed = True


class FakeLocalBackend(LocalBackend):
    def __init__(self) -> None:
        super().__init__()
        self.spoken: list[tuple[int, float]] = []
        self.current: tuple[int, int] | None = None
        self.paused = False
        self.can_pause = True

    @property
    def name(self) -> str:
        return "fake-local"

    @property
    def is_paused(self) -> bool:
        return self.current is not None and self.paused

    @property
    def is_speaking(self) -> bool:
        return self.current is not None and not self.paused

    async def speak(self, text: str, *, index: int, token: int, rate: float) -> None:
        self.spoken.append((index, rate))
        self.current = (index, token)
        self.paused = False
        self._emit(EventKind.STARTED, index, token)

    def pause(self) -> bool:
        if self.current is None or self.paused or not self.can_pause:
            return False
        self.paused = True
        self._emit(EventKind.PAUSED, *self.current)
        return True

    def resume(self) -> bool:
        if self.current is None or not self.paused:
            return False
        self.paused = False
        self._emit(EventKind.RESUMED, *self.current)
        return True

    def stop(self) -> None:
        if self.current is None:
            return
        index, token = self.current
        self.current = None
        self.paused = False
        self._emit(EventKind.CANCELLED, index, token)

    def finish(self) -> None:
        index, token = self.current
        self.current = None
        self._emit(EventKind.FINISHED, index, token)

    def die(self) -> None:
        index, token = self.current
        self.current = None
        self._emit(EventKind.CANCELLED, index, token)


class FakePlayer:
    def __init__(self) -> None:
        self.loaded: AudioResource | None = None
        self.loads: list[str] = []
        self.on_finished: Callable[[], None] | None = None
        self.playing = False
        self.play_calls = 0
        self.rate: float | None = None
        self.closed = False
        self._ended = False

    @property
    def has_item(self) -> bool:
        return self.loaded is not None

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def is_playing(self) -> bool:
        return self.playing

    def load(self, resource: AudioResource, on_finished: Callable[[], None]) -> None:
        self.loaded = resource
        self.loads.append(resource.resource_id)
        self.on_finished = on_finished
        self._ended = False

    def play(self, rate: float) -> None:
        self.playing = True
        self.play_calls += 1
        self.rate = rate

    def pause(self) -> None:
        self.playing = False

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def stop(self) -> None:
        self.loaded = None
        self.on_finished = None
        self.playing = False

    def close(self) -> None:
        self.closed = True

    def finish(self) -> None:
        self._ended = True
        self.playing = False
        self.on_finished()


class FakeSettings:
    def __init__(self, rate: float = 1.0) -> None:
        self.rate = rate
        self.saved: list[float] = []

    def get_rate(self) -> float:
        return self.rate

    def set_rate(self, rate: float) -> None:
        self.rate = rate
        self.saved.append(rate)


class FakeStats:
    def __init__(self) -> None:
        self.recorded: list[float] = []

    def record_seconds(self, seconds: float) -> None:
        self.recorded.append(seconds)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingPublisher:
    def __init__(self) -> None:
        self.published = []

    def publish(self, info) -> None:
        self.published.append(info)


@pytest.fixture
def make_session(tmp_path):
    def factory(backend, player=None, **kwargs) -> PlaybackSession:
        cache = RenderCache(tmp_path / "audio")
        return PlaybackSession(lambda: backend, player=player, cache=cache, **kwargs)

    return factory
