"""
Boundary with the host media session.

Outbound: a `NowPlayingInfo` snapshot handed to a `NowPlayingPublisher`
whenever position, rate or session-active state changes. Inbound: remote
transport commands translated 1:1 onto the session's control surface. Scrubbing
to an absolute time is not supported; playback is paragraph-granular.

`BackgroundWork` keeps the process alive while network renders are in flight
after foreground execution is suspended. Leases are reference counted and
releasing one twice is harmless.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Protocol

from .logging_utils import EventLogger, create_event_logger

if TYPE_CHECKING:  # pragma: no cover
    from .session import PlaybackSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NowPlayingInfo:
    title: str
    artwork: bytes | None
    estimated_total_duration: float
    estimated_elapsed: float
    rate: float


class NowPlayingPublisher(Protocol):
    def publish(self, info: NowPlayingInfo) -> None: ...


class LoggingNowPlayingPublisher:
    """Publisher for hosts without a media session: records the snapshot as an event."""

    def __init__(self, event_logger: EventLogger | None = None) -> None:
        self.event_logger = event_logger or create_event_logger(logger, "human")
        self.last: NowPlayingInfo | None = None

    def publish(self, info: NowPlayingInfo) -> None:
        self.last = info
        self.event_logger.log(
            "now_playing",
            title=info.title,
            elapsed=round(info.estimated_elapsed, 1),
            duration=round(info.estimated_total_duration, 1),
            rate=info.rate,
            level="debug",
        )


class RemoteCommand(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    TOGGLE = "toggle"
    NEXT = "next"
    PREVIOUS = "previous"
    CHANGE_POSITION = "change_position"


class CommandStatus(str, Enum):
    SUCCESS = "success"
    NO_SUCH_CONTENT = "no_such_content"
    UNSUPPORTED = "unsupported"


class TransportBridge:
    """Routes remote transport commands into a `PlaybackSession`."""

    def __init__(self, session: "PlaybackSession") -> None:
        self.session = session

    def handle(self, command: RemoteCommand | str) -> CommandStatus:
        try:
            command = RemoteCommand(command)
        except ValueError:
            logger.warning("Unknown transport command: %s", command)
            return CommandStatus.UNSUPPORTED

        if command is RemoteCommand.CHANGE_POSITION:
            return CommandStatus.UNSUPPORTED
        if self.session.total_paragraphs == 0:
            return CommandStatus.NO_SUCH_CONTENT

        if command is RemoteCommand.PLAY:
            self.session.play()
        elif command is RemoteCommand.PAUSE:
            self.session.pause()
        elif command is RemoteCommand.TOGGLE:
            if self.session.is_session_active:
                self.session.pause()
            else:
                self.session.play()
        elif command is RemoteCommand.NEXT:
            self.session.skip_forward()
        elif command is RemoteCommand.PREVIOUS:
            self.session.skip_backward()
        return CommandStatus.SUCCESS


class BackgroundLease:
    def __init__(self, owner: "BackgroundWork", lease_id: int, label: str) -> None:
        self._owner = owner
        self.lease_id = lease_id
        self.label = label
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._owner._release(self)


class BackgroundWork:
    """Reference-counted background execution grant.

    `on_begin` runs when the first lease is taken and `on_end` when the last
    one is released, mirroring begin/end background-task pairs of a host OS.
    """

    def __init__(
        self,
        on_begin: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None,
    ) -> None:
        self._on_begin = on_begin
        self._on_end = on_end
        self._ids = itertools.count(1)
        self._active: dict[int, BackgroundLease] = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    def acquire(self, label: str = "") -> BackgroundLease:
        lease = BackgroundLease(self, next(self._ids), label)
        first = not self._active
        self._active[lease.lease_id] = lease
        if first and self._on_begin is not None:
            self._on_begin()
        return lease

    def _release(self, lease: BackgroundLease) -> None:
        if self._active.pop(lease.lease_id, None) is None:
            return
        if not self._active and self._on_end is not None:
            self._on_end()
