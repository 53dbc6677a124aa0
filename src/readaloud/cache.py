"""
Paragraph render cache with single-flight request deduplication.

Each paragraph index of the bound document has at most one entry: either a
resolved `AudioResource` on disk or one pending render task. Concurrent callers
for the same index join the pending task. Failures are not cached. Binding a
new document cancels every pending render and bumps the generation so a late
result for the old document is discarded instead of stored.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Sequence, Union

from .backend_base import AudioResource, RemoteBackend, resource_name
from .errors import ProviderError, StaleRenderError
from .logging_utils import EventLogger, create_event_logger
from .transport import BackgroundWork

logger = logging.getLogger(__name__)

CacheEntry = Union[AudioResource, "asyncio.Task[AudioResource]"]


class RenderCache:
    def __init__(
        self,
        audio_dir: str | Path | None = None,
        *,
        background_work: BackgroundWork | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.audio_dir = Path(audio_dir) if audio_dir else Path(tempfile.gettempdir()) / "readaloud"
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        self.background_work = background_work
        self.event_logger = event_logger or create_event_logger(logger, "human")
        self._events = self.event_logger
        self._backend: RemoteBackend | None = None
        self._book_id: str | None = None
        self._paragraphs: tuple[str, ...] = ()
        self._generation = 0
        self._entries: dict[int, CacheEntry] = {}
        self._written: set[Path] = set()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Public API

    @property
    def book_id(self) -> str | None:
        return self._book_id

    def bind(
        self,
        book_id: str,
        paragraphs: Sequence[str],
        backend: RemoteBackend | None,
    ) -> None:
        """Replace the document; all previous entries are dropped."""
        self.clear()
        self._book_id = book_id
        self._events = self.event_logger.bind(book_id=book_id)
        self._paragraphs = tuple(paragraphs)
        self._backend = backend

    def clear(self) -> None:
        """Cancel pending renders, forget resolved ones and delete their files."""
        self._generation += 1
        pending = 0
        for entry in self._entries.values():
            if isinstance(entry, asyncio.Task) and not entry.done():
                entry.cancel()
                pending += 1
        self._entries.clear()
        self._remove_files()
        if self._book_id is not None:
            self._events.log(
                "cache_cleared", cancelled=pending, level="debug"
            )

    def peek(self, index: int) -> AudioResource | None:
        entry = self._entries.get(index)
        return entry if isinstance(entry, AudioResource) else None

    def has_entry(self, index: int) -> bool:
        return index in self._entries

    def is_pending(self, index: int) -> bool:
        entry = self._entries.get(index)
        return isinstance(entry, asyncio.Task) and not entry.done()

    async def get(self, book_id: str, index: int) -> AudioResource:
        """Return the rendered resource for `index`, rendering on miss.

        Cancelling the caller never cancels the shared render; other waiters
        (prefetch, a later play) still receive its outcome.
        """
        async with self._lock:
            if book_id != self._book_id:
                raise StaleRenderError(f"{book_id} is not the bound document.")
            if not 0 <= index < len(self._paragraphs):
                raise IndexError(f"paragraph index {index} out of range")
            if self._backend is None:
                raise ProviderError("No remote backend bound to the render cache.")

            entry = self._entries.get(index)
            if isinstance(entry, AudioResource):
                self._events.log("cache_hit", index=index, level="debug")
                return entry
            if entry is None:
                entry = asyncio.create_task(
                    self._render(self._generation, book_id, index, self._paragraphs[index]),
                    name=f"render-{resource_name(book_id, index)}",
                )
                generation = self._generation
                entry.add_done_callback(
                    lambda task, index=index, generation=generation: self._on_render_done(
                        index, generation, task
                    )
                )
                self._entries[index] = entry
                self._events.log("cache_miss", index=index, level="debug")
            else:
                self._events.log("cache_join", index=index, level="debug")

        try:
            return await asyncio.shield(entry)
        except asyncio.CancelledError:
            if entry.cancelled():
                # the render itself was cancelled by clear(); the waiter was not
                current = asyncio.current_task()
                if current is None or not current.cancelling():
                    raise StaleRenderError(
                        f"render of paragraph {index} was discarded"
                    ) from None
            raise

    # ------------------------------------------------------------------ #
    # Internal helpers

    async def _render(self, generation: int, book_id: str, index: int, text: str) -> AudioResource:
        assert self._backend is not None
        backend = self._backend
        lease = self.background_work.acquire(resource_name(book_id, index)) if self.background_work else None
        try:
            payload = await backend.render(text)
        except ProviderError as exc:
            self._events.log(
                "render_failed",
                level="warning",
                index=index,
                error=exc.__class__.__name__,
            )
            raise
        finally:
            if lease is not None:
                lease.release()

        if generation != self._generation:
            raise StaleRenderError(f"paragraph {index} rendered for a replaced document")

        path = self.audio_dir / f"{resource_name(book_id, index)}{backend.audio_suffix}"
        path.write_bytes(payload)
        self._written.add(path)
        resource = AudioResource(
            resource_id=resource_name(book_id, index),
            path=path,
            byte_len=len(payload),
        )
        self._entries[index] = resource
        self._events.log("render_complete", index=index, byte_len=len(payload), level="debug")
        return resource

    def _on_render_done(
        self, index: int, generation: int, task: "asyncio.Task[AudioResource]"
    ) -> None:
        failed = task.cancelled() or task.exception() is not None
        # A failed render frees its slot so the next access can retry.
        if failed and generation == self._generation and self._entries.get(index) is task:
            del self._entries[index]

    def _remove_files(self) -> None:
        # Only files this cache wrote; the audio directory may be shared.
        for path in self._written:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        self._written.clear()
