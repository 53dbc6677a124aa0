"""
Offline backend driving the platform speech command (`say`, `espeak-ng`, `espeak`).

Each paragraph is one utterance: one child process. Pausing suspends the child
with SIGSTOP, resuming continues it, stopping terminates it. The process exit
is translated into a FINISHED or CANCELLED event for the session.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
import subprocess
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .backend_base import EventKind, LocalBackend
from .errors import BackendUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandProfile:
    rate_flag: str
    voice_flag: str
    min_wpm: int
    max_wpm: int


COMMAND_PROFILES: dict[str, CommandProfile] = {
    "say": CommandProfile(rate_flag="-r", voice_flag="-v", min_wpm=90, max_wpm=720),
    "espeak-ng": CommandProfile(rate_flag="-s", voice_flag="-v", min_wpm=80, max_wpm=450),
    "espeak": CommandProfile(rate_flag="-s", voice_flag="-v", min_wpm=80, max_wpm=450),
}


def detect_speech_command(preferred: str | None = None) -> str | None:
    """Return the first available speech command, honouring `preferred`."""
    candidates = [preferred] if preferred else list(COMMAND_PROFILES)
    for name in candidates:
        if name and shutil.which(name):
            return name
    return None


@dataclass
class _Utterance:
    process: Any
    index: int
    token: int
    paused: bool = False
    cancelled: bool = False
    watcher: asyncio.Task | None = field(default=None, repr=False)


SpawnFn = Callable[..., Awaitable[Any]]


class SystemSpeechBackend(LocalBackend):
    def __init__(
        self,
        *,
        command: str = "espeak",
        executable: str | None = None,
        voice: str | None = None,
        base_wpm: int = 175,
        spawn: SpawnFn | None = None,
    ) -> None:
        super().__init__()
        profile = COMMAND_PROFILES.get(command)
        if profile is None:
            raise ValueError(f"Unsupported speech command: {command}")
        self.command = command
        self.executable = executable or command
        self.voice = voice
        self.base_wpm = base_wpm
        self._profile = profile
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._current: _Utterance | None = None

    @property
    def name(self) -> str:
        return f"local/{self.command}"

    @property
    def is_paused(self) -> bool:
        return self._current is not None and self._current.paused

    @property
    def is_speaking(self) -> bool:
        return self._current is not None and not self._current.paused

    def map_rate(self, multiplier: float) -> int:
        wpm = int(round(self.base_wpm * multiplier))
        return max(self._profile.min_wpm, min(self._profile.max_wpm, wpm))

    def build_argv(self, text: str, rate: float) -> list[str]:
        argv = [self.executable, self._profile.rate_flag, str(self.map_rate(rate))]
        if self.voice:
            argv.extend([self._profile.voice_flag, self.voice])
        argv.extend(["--", text])
        return argv

    async def speak(self, text: str, *, index: int, token: int, rate: float) -> None:
        self.stop()
        argv = self.build_argv(text, rate)
        try:
            process = await self._spawn(
                *argv,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot start {self.executable}: {exc}") from exc

        utterance = _Utterance(process=process, index=index, token=token)
        self._current = utterance
        logger.debug("utterance started index=%s wpm=%s", index, argv[2])
        self._emit(EventKind.STARTED, index, token)
        utterance.watcher = asyncio.create_task(self._watch(utterance))

    def pause(self) -> bool:
        utterance = self._current
        stop_signal = getattr(signal, "SIGSTOP", None)
        if utterance is None or utterance.paused or stop_signal is None:
            return False
        if not self._signal(utterance, stop_signal):
            return False
        utterance.paused = True
        self._emit(EventKind.PAUSED, utterance.index, utterance.token)
        return True

    def resume(self) -> bool:
        utterance = self._current
        cont_signal = getattr(signal, "SIGCONT", None)
        if utterance is None or not utterance.paused or cont_signal is None:
            return False
        if not self._signal(utterance, cont_signal):
            return False
        utterance.paused = False
        self._emit(EventKind.RESUMED, utterance.index, utterance.token)
        return True

    def stop(self) -> None:
        utterance = self._current
        if utterance is None:
            return
        self._current = None
        utterance.cancelled = True
        cont_signal = getattr(signal, "SIGCONT", None)
        if utterance.paused and cont_signal is not None:
            self._signal(utterance, cont_signal)
        try:
            utterance.process.terminate()
        except ProcessLookupError:
            logger.debug("utterance index=%s already exited", utterance.index)

    async def close(self) -> None:
        utterance = self._current
        self.stop()
        if utterance is not None and utterance.watcher is not None:
            await asyncio.gather(utterance.watcher, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internal helpers

    def _signal(self, utterance: _Utterance, signum: int) -> bool:
        try:
            utterance.process.send_signal(signum)
        except ProcessLookupError:
            return False
        return True

    async def _watch(self, utterance: _Utterance) -> None:
        returncode = await utterance.process.wait()
        if self._current is utterance:
            self._current = None

        if utterance.cancelled or returncode != 0:
            if not utterance.cancelled:
                logger.warning(
                    "%s exited with status %s for paragraph %s",
                    self.executable,
                    returncode,
                    utterance.index,
                )
            self._emit(EventKind.CANCELLED, utterance.index, utterance.token)
            return

        self._emit(EventKind.FINISHED, utterance.index, utterance.token)
