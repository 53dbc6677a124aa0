"""
Paragraph playback session: the state machine and orchestrator.

All mutation of position and session state happens on the asyncio loop that
called `start()`. Control methods are synchronous and fire-and-forget; their
asynchronous outcomes (renders, utterances) are reconciled through a single
active playback task and a queue of `PlaybackEvent`s. Every render-and-play is
stamped with a token; results and events carrying an older token are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import replace
from typing import Callable, Protocol, Sequence

from . import progress
from .backend_base import (
    AudioPlayer,
    EventKind,
    LocalBackend,
    PlaybackEvent,
    RemoteBackend,
    SynthesisBackend,
)
from .cache import RenderCache
from .config import MAX_RATE, MIN_RATE
from .errors import (
    AudioDeviceError,
    BackendUnavailableError,
    ContentTooLargeError,
    ProviderError,
    StaleRenderError,
)
from .logging_utils import EventLogger, create_event_logger
from .prefetch import PrefetchScheduler
from .state import (
    Command,
    PersistProgress,
    PlaybackState,
    PublishNowPlaying,
    SessionSnapshot,
    StartListening,
    StopListening,
    plan_effects,
)
from .transport import BackgroundWork, NowPlayingInfo, NowPlayingPublisher

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARAGRAPH_CHARS = 4800


class RateSettings(Protocol):
    def get_rate(self) -> float: ...

    def set_rate(self, rate: float) -> None: ...


class ListeningRecorder(Protocol):
    def record_seconds(self, seconds: float) -> None: ...


ProgressSink = Callable[[str, int], None]
SnapshotObserver = Callable[[SessionSnapshot], None]
BackendFactory = Callable[[], SynthesisBackend]


def clamp_rate(rate: float) -> float:
    return min(max(float(rate), MIN_RATE), MAX_RATE)


class PlaybackSession:
    def __init__(
        self,
        backend_factory: BackendFactory,
        *,
        player: AudioPlayer | None = None,
        cache: RenderCache | None = None,
        settings: RateSettings | None = None,
        stats: ListeningRecorder | None = None,
        progress_sink: ProgressSink | None = None,
        publisher: NowPlayingPublisher | None = None,
        background_work: BackgroundWork | None = None,
        lookahead: int = 2,
        max_paragraph_chars: int = DEFAULT_MAX_PARAGRAPH_CHARS,
        chars_per_second: float = progress.CHARS_PER_SECOND,
        clock: Callable[[], float] | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self._backend_factory = backend_factory
        self._player = player
        self.event_logger = event_logger or create_event_logger(logger, "human")
        self._cache = cache or RenderCache(
            background_work=background_work, event_logger=self.event_logger
        )
        self._prefetch = PrefetchScheduler(
            self._cache, lookahead=lookahead, event_logger=self.event_logger
        )
        self._settings = settings
        self._stats = stats
        self._progress_sink = progress_sink
        self._publisher = publisher
        self.max_paragraph_chars = max_paragraph_chars
        self.chars_per_second = chars_per_second
        self._clock = clock or time.monotonic

        initial_rate = clamp_rate(settings.get_rate()) if settings is not None else 1.0
        self._snapshot = SessionSnapshot(rate=initial_rate)
        self._paragraphs: tuple[str, ...] = ()
        self._title: str | None = None
        self._artwork: bytes | None = None
        self._backend: SynthesisBackend | None = None
        self._observers: list[SnapshotObserver] = []

        self._token = 0
        self._active_task: asyncio.Task[None] | None = None
        self._active_index: int | None = None
        self._loaded_token: int | None = None
        self._loaded_index: int | None = None
        self._listening_since: float | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[PlaybackEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------ #
    # Lifecycle

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._consumer = asyncio.create_task(self._consume_events(), name="session-events")

    async def close(self) -> None:
        self._halt_output()
        self._cancel_active()
        self._prefetch.cancel_all()
        self._cache.clear()
        if self._snapshot.state in (PlaybackState.PLAYING, PlaybackState.LOADING):
            self._commit(state=PlaybackState.PAUSED, is_session_active=False, is_loading=False)

        pending = [task for task in (self._active_task, self._consumer) if task is not None]
        if self._consumer is not None:
            self._consumer.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._consumer = None
        self._loop = None

        if self._backend is not None:
            await self._backend.close()
        if self._player is not None:
            self._player.close()

    async def __aenter__(self) -> "PlaybackSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def post_event(self, event: PlaybackEvent) -> None:
        """Queue a backend or player event. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or self._events is None:
            logger.debug("dropping %s event: session not running", event.kind.value)
            return
        loop.call_soon_threadsafe(self._events.put_nowait, event)

    # ------------------------------------------------------------------ #
    # Observable state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> PlaybackState:
        return self._snapshot.state

    @property
    def book_id(self) -> str | None:
        return self._snapshot.book_id

    @property
    def paragraphs(self) -> tuple[str, ...]:
        return self._paragraphs

    @property
    def is_playing(self) -> bool:
        return self._snapshot.is_playing

    @property
    def is_session_active(self) -> bool:
        return self._snapshot.is_session_active

    @property
    def current_paragraph_index(self) -> int:
        return self._snapshot.current_index

    @property
    def total_paragraphs(self) -> int:
        return self._snapshot.total_paragraphs

    @property
    def is_loading(self) -> bool:
        return self._snapshot.is_loading

    @property
    def error_message(self) -> str | None:
        return self._snapshot.error_message

    @property
    def rate(self) -> float:
        return self._snapshot.rate

    @property
    def is_remote_mode(self) -> bool:
        return self._backend is not None and self._backend.is_remote

    @property
    def backend(self) -> SynthesisBackend | None:
        return self._backend

    @property
    def cache(self) -> RenderCache:
        return self._cache

    @property
    def prefetch(self) -> PrefetchScheduler:
        return self._prefetch

    @property
    def progress(self) -> float:
        return progress.progress(self.current_paragraph_index, self.total_paragraphs)

    @property
    def percentage_string(self) -> str:
        return progress.percentage_string(self.current_paragraph_index, self.total_paragraphs)

    @property
    def time_elapsed_string(self) -> str:
        return progress.format_duration(
            progress.elapsed_seconds(
                self._paragraphs, self.current_paragraph_index, self.rate, self.chars_per_second
            )
        )

    @property
    def time_remaining_string(self) -> str:
        return progress.format_duration(
            progress.remaining_seconds(
                self._paragraphs, self.current_paragraph_index, self.rate, self.chars_per_second
            )
        )

    def now_playing(self) -> NowPlayingInfo:
        snapshot = self._snapshot
        return NowPlayingInfo(
            title=self._title or (snapshot.book_id or ""),
            artwork=self._artwork,
            estimated_total_duration=progress.total_seconds(
                self._paragraphs, snapshot.rate, self.chars_per_second
            ),
            estimated_elapsed=progress.elapsed_seconds(
                self._paragraphs, snapshot.current_index, snapshot.rate, self.chars_per_second
            ),
            rate=snapshot.rate if snapshot.is_session_active else 0.0,
        )

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # ------------------------------------------------------------------ #
    # Control surface

    def load_book(
        self,
        paragraphs: Sequence[str],
        book_id: str,
        initial_index: int = 0,
        *,
        title: str | None = None,
        artwork: bytes | None = None,
    ) -> bool:
        """Make `paragraphs` the active document. Reloading the same book is a no-op."""
        if book_id == self._snapshot.book_id and self._paragraphs:
            return False

        backend = self._backend_factory()
        self._halt_output()
        self._cancel_active()
        self._prefetch.cancel_all()

        self._paragraphs = tuple(paragraphs)
        self._title = title
        self._artwork = artwork
        total = len(self._paragraphs)
        index = min(max(int(initial_index), 0), max(total - 1, 0))

        self._install_backend(backend)
        self._cache.bind(book_id, self._paragraphs, self._remote_backend())
        self._token += 1

        self._commit(
            book_id=book_id,
            total_paragraphs=total,
            current_index=index,
            state=PlaybackState.IDLE,
            is_session_active=False,
            is_loading=False,
            error_message=None,
        )
        self.event_logger.log(
            "book_loaded",
            book_id=book_id,
            paragraphs=total,
            index=index,
            backend=self._backend.name if self._backend else None,
        )

        if self.is_remote_mode and total:
            self._prefetch.warm(book_id, [index, index + 1], total)
        return True

    def reconfigure(self) -> None:
        """Re-select the backend after a configuration change; playback stops."""
        backend = self._backend_factory()
        self._halt_output()
        self._cancel_active()
        self._prefetch.cancel_all()
        self._install_backend(backend)
        if self._snapshot.book_id is not None:
            self._cache.bind(self._snapshot.book_id, self._paragraphs, self._remote_backend())
        self._token += 1
        state = self._snapshot.state
        if state in (PlaybackState.PLAYING, PlaybackState.LOADING):
            state = PlaybackState.PAUSED
        self._commit(state=state, is_session_active=False, is_loading=False)

    def play(self) -> None:
        if not self._paragraphs:
            return

        if self._resume_loaded():
            self._commit(
                state=PlaybackState.PLAYING,
                is_session_active=True,
                is_loading=False,
                error_message=None,
            )
            return

        index = self._snapshot.current_index
        if (
            self._active_task is not None
            and not self._active_task.done()
            and self._active_index == index
        ):
            self._commit(is_session_active=True)
            return

        self._commit(
            is_session_active=True,
            state=PlaybackState.LOADING,
            is_loading=True,
            error_message=None,
        )
        self._start_render_and_play(index)

    def pause(self) -> None:
        if self._backend is not None:
            if self.is_remote_mode:
                if self._player is not None:
                    self._player.pause()
            else:
                backend = self._local_backend()
                if not backend.pause() and backend.is_speaking:
                    # No way to suspend the command; stop it and restart the paragraph on play.
                    self._halt_output()
                    self._token += 1

        # Only auto-start work is cancelled; shared renders keep going.
        self._cancel_active()

        state = self._snapshot.state
        if state in (PlaybackState.PLAYING, PlaybackState.LOADING):
            state = PlaybackState.PAUSED
        self._commit(state=state, is_session_active=False, is_loading=False)

    def skip_forward(self, amount: int = 1) -> bool:
        return self._skip(amount)

    def skip_backward(self, amount: int = 1) -> bool:
        return self._skip(-amount)

    def seek(self, percentage: float) -> None:
        total = self._snapshot.total_paragraphs
        if total == 0 or math.isnan(percentage):
            return
        fraction = min(max(float(percentage), 0.0), 1.0)
        index = min(max(math.floor(fraction * total), 0), total - 1)
        # Seeking always restarts, even onto the current paragraph.
        self._jump(index)

    def restore_position(self, index: int) -> bool:
        if not 0 <= index < self._snapshot.total_paragraphs:
            return False
        self._commit(current_index=index, persist=False)
        return True

    def set_rate(self, rate: float) -> bool:
        """Change the playback rate; returns False if audio in flight keeps its old rate."""
        rate = clamp_rate(rate)
        self._commit(rate=rate)
        if self._settings is not None:
            self._settings.set_rate(rate)

        if self._backend is None:
            return True
        if self.is_remote_mode:
            if self._player is not None and self._player.has_item:
                self._player.set_rate(rate)
            return True
        return self._local_backend().set_rate(rate)

    # ------------------------------------------------------------------ #
    # Internal: playback paths

    def _skip(self, delta: int) -> bool:
        total = self._snapshot.total_paragraphs
        if total == 0 or delta == 0:
            return False
        current = self._snapshot.current_index
        target = min(max(current + delta, 0), total - 1)
        if target == current:
            return False
        self._jump(target)
        return True

    def _jump(self, index: int) -> None:
        self._halt_output()
        self._commit(
            current_index=index,
            is_session_active=True,
            state=PlaybackState.LOADING,
            is_loading=True,
            error_message=None,
        )
        self._start_render_and_play(index)

    def _start_render_and_play(self, index: int) -> None:
        self._cancel_active()
        self._token += 1
        token = self._token
        self._active_index = index
        self._active_task = asyncio.create_task(
            self._render_and_play(index, token), name=f"play-{index}"
        )

    async def _render_and_play(self, index: int, token: int) -> None:
        text = self._paragraphs[index]
        try:
            if len(text) > self.max_paragraph_chars:
                raise ContentTooLargeError(
                    index=index, length=len(text), limit=self.max_paragraph_chars
                )
            self._commit(state=PlaybackState.LOADING, is_loading=True, error_message=None)
            if self.is_remote_mode:
                await self._play_remote(index, token)
            else:
                await self._speak_local(index, token, text)
        except StaleRenderError as exc:
            logger.debug("discarding superseded render: %s", exc)
        except ContentTooLargeError as exc:
            self._surface_error(index, token, str(exc), exc)
        except (ProviderError, AudioDeviceError, BackendUnavailableError, OSError) as exc:
            self._surface_error(index, token, f"Playback error: {exc}", exc)

    async def _play_remote(self, index: int, token: int) -> None:
        book_id = self._snapshot.book_id
        assert book_id is not None
        resource = await self._cache.get(book_id, index)
        if token != self._token:
            return
        if self._player is None:
            raise AudioDeviceError("No audio player configured for remote playback.")

        self._player.load(resource, on_finished=lambda: self._post_finished(index, token))
        self._loaded_token = token
        self._loaded_index = index
        self._player.play(self._snapshot.rate)
        self._commit(state=PlaybackState.PLAYING, is_loading=False)
        self.event_logger.log("paragraph_started", index=index, resource=resource.resource_id)
        self._prefetch.maintain(book_id, index, self._snapshot.total_paragraphs)

    async def _speak_local(self, index: int, token: int, text: str) -> None:
        backend = self._local_backend()
        await backend.speak(text, index=index, token=token, rate=self._snapshot.rate)
        if token != self._token:
            backend.stop()
            return
        self._loaded_token = token
        self._loaded_index = index
        self._commit(state=PlaybackState.PLAYING, is_loading=False)
        self.event_logger.log("paragraph_started", index=index, backend=backend.name)

    def _post_finished(self, index: int, token: int) -> None:
        self.post_event(PlaybackEvent(kind=EventKind.FINISHED, index=index, token=token))

    def _resume_loaded(self) -> bool:
        if (
            self._backend is None
            or self._loaded_token is None
            or self._loaded_index != self._snapshot.current_index
        ):
            return False
        if self.is_remote_mode:
            player = self._player
            if player is None or not player.has_item or player.ended:
                return False
            player.play(self._snapshot.rate)
            return True
        backend = self._local_backend()
        return backend.is_speaking or backend.resume()

    def _halt_output(self) -> None:
        if self._backend is not None:
            if self.is_remote_mode:
                if self._player is not None:
                    self._player.stop()
            else:
                self._local_backend().stop()
        self._loaded_token = None
        self._loaded_index = None

    def _cancel_active(self) -> None:
        task = self._active_task
        if task is not None and not task.done():
            task.cancel()
        self._active_task = None
        self._active_index = None

    def _surface_error(self, index: int, token: int, message: str, exc: Exception) -> None:
        if token != self._token:
            return
        self._commit(
            state=PlaybackState.PAUSED,
            is_session_active=False,
            is_loading=False,
            error_message=message,
        )
        self.event_logger.log(
            "playback_error",
            level="error",
            index=index,
            error=exc.__class__.__name__,
        )

    # ------------------------------------------------------------------ #
    # Internal: events

    async def _consume_events(self) -> None:
        assert self._events is not None
        while True:
            event = await self._events.get()
            self.handle_event(event)

    def handle_event(self, event: PlaybackEvent) -> None:
        if event.token != self._token:
            logger.debug("discarding stale %s event for paragraph %s", event.kind.value, event.index)
            return

        if event.kind is EventKind.FINISHED:
            self._on_paragraph_finished()
        elif event.kind is EventKind.STARTED:
            if self._snapshot.is_session_active:
                self._commit(state=PlaybackState.PLAYING, is_loading=False)
        elif event.kind is EventKind.CANCELLED:
            self._loaded_token = None
            self._surface_error(
                event.index,
                event.token,
                "Playback error: speech engine stopped unexpectedly.",
                BackendUnavailableError("utterance cancelled"),
            )
        else:
            logger.debug("utterance %s for paragraph %s", event.kind.value, event.index)

    def _on_paragraph_finished(self) -> None:
        self._loaded_token = None
        self._loaded_index = None
        snapshot = self._snapshot
        next_index = snapshot.current_index + 1

        if next_index >= snapshot.total_paragraphs:
            self._halt_output()
            self._commit(
                state=PlaybackState.FINISHED,
                is_session_active=False,
                is_loading=False,
            )
            self.event_logger.log("book_finished", book_id=snapshot.book_id)
            return

        if not snapshot.is_session_active:
            self._commit(current_index=next_index)
            return

        self._commit(
            current_index=next_index,
            state=PlaybackState.LOADING,
            is_loading=True,
            error_message=None,
        )
        self._start_render_and_play(next_index)

    # ------------------------------------------------------------------ #
    # Internal: state transitions

    def _commit(self, *, persist: bool = True, **changes: object) -> SessionSnapshot:
        previous = self._snapshot
        current = replace(previous, **changes)
        if current == previous:
            return current
        self._snapshot = current
        for command in plan_effects(previous, current, persist=persist):
            self._execute(command)
        for observer in list(self._observers):
            observer(current)
        return current

    def _execute(self, command: Command) -> None:
        if isinstance(command, StartListening):
            self._listening_since = self._clock()
        elif isinstance(command, StopListening):
            if self._listening_since is not None:
                seconds = self._clock() - self._listening_since
                self._listening_since = None
                if self._stats is not None and seconds > 0:
                    self._stats.record_seconds(seconds)
        elif isinstance(command, PersistProgress):
            if self._progress_sink is not None:
                try:
                    self._progress_sink(command.book_id, command.index)
                except OSError as exc:
                    logger.warning("Failed to persist progress for %s: %s", command.book_id, exc)
        elif isinstance(command, PublishNowPlaying):
            if self._publisher is not None:
                self._publisher.publish(self.now_playing())

    # ------------------------------------------------------------------ #
    # Internal: backend selection

    def _install_backend(self, backend: SynthesisBackend) -> None:
        previous = self._backend
        if previous is not None and previous is not backend and isinstance(previous, LocalBackend):
            previous.stop()
            previous.set_listener(None)
        self._backend = backend
        if isinstance(backend, LocalBackend):
            backend.set_listener(self.post_event)

    def _remote_backend(self) -> RemoteBackend | None:
        return self._backend if isinstance(self._backend, RemoteBackend) else None

    def _local_backend(self) -> LocalBackend:
        assert isinstance(self._backend, LocalBackend)
        return self._backend
