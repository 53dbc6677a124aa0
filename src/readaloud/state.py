"""
Session state snapshots and the side effects implied by a transition.

`plan_effects(previous, current)` is pure: it looks at two snapshots and
returns the commands the session must execute (publish now-playing metadata,
persist progress, start or stop the listening clock).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass(frozen=True)
class SessionSnapshot:
    book_id: str | None = None
    total_paragraphs: int = 0
    current_index: int = 0
    state: PlaybackState = PlaybackState.IDLE
    is_session_active: bool = False
    is_loading: bool = False
    error_message: str | None = None
    rate: float = 1.0

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING


@dataclass(frozen=True)
class PublishNowPlaying:
    pass


@dataclass(frozen=True)
class PersistProgress:
    book_id: str
    index: int


@dataclass(frozen=True)
class StartListening:
    pass


@dataclass(frozen=True)
class StopListening:
    pass


Command = Union[PublishNowPlaying, PersistProgress, StartListening, StopListening]


def plan_effects(
    previous: SessionSnapshot,
    current: SessionSnapshot,
    *,
    persist: bool = True,
) -> list[Command]:
    commands: list[Command] = []

    if previous.is_playing and not current.is_playing:
        commands.append(StopListening())
    elif current.is_playing and not previous.is_playing:
        commands.append(StartListening())

    same_book = previous.book_id == current.book_id
    if (
        persist
        and same_book
        and current.book_id is not None
        and previous.current_index != current.current_index
    ):
        commands.append(PersistProgress(book_id=current.book_id, index=current.current_index))

    if current.book_id is not None and (
        not same_book
        or previous.current_index != current.current_index
        or previous.rate != current.rate
        or previous.is_session_active != current.is_session_active
        or previous.total_paragraphs != current.total_paragraphs
    ):
        commands.append(PublishNowPlaying())

    return commands
