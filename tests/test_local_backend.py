from __future__ import annotations

import asyncio
import signal

import pytest

from conftest import settle
from readaloud.backend_base import EventKind
from readaloud.errors import BackendUnavailableError
from readaloud.local_backend import SystemSpeechBackend, detect_speech_command


class _FakeProcess:
    def __init__(self) -> None:
        self.signals: list[int] = []
        self.terminated = False
        self._done = asyncio.Event()
        self.returncode: int | None = None

    def send_signal(self, signum: int) -> None:
        self.signals.append(signum)

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def exit(self, code: int) -> None:
        self.returncode = code
        self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self.returncode


class _Spawner:
    def __init__(self) -> None:
        self.argv: list[tuple[str, ...]] = []
        self.processes: list[_FakeProcess] = []

    async def __call__(self, *argv, **kwargs):
        self.argv.append(argv)
        process = _FakeProcess()
        self.processes.append(process)
        return process


def _backend(spawner, **kwargs) -> tuple[SystemSpeechBackend, list]:
    events = []
    backend = SystemSpeechBackend(spawn=spawner, **kwargs)
    backend.set_listener(events.append)
    return backend, events


def test_rate_mapping_is_clamped():
    backend = SystemSpeechBackend(command="espeak-ng", base_wpm=175)
    assert backend.map_rate(1.0) == 175
    assert backend.map_rate(2.0) == 350
    assert backend.map_rate(3.0) == 450
    assert backend.map_rate(0.1) == 80


def test_build_argv_includes_voice():
    backend = SystemSpeechBackend(command="say", voice="Samantha", base_wpm=200)
    assert backend.build_argv("-hello", 1.5) == ["say", "-r", "300", "-v", "Samantha", "--", "-hello"]


def test_unknown_command_rejected():
    with pytest.raises(ValueError):
        SystemSpeechBackend(command="festival")


def test_speak_emits_started_then_finished():
    async def scenario():
        spawner = _Spawner()
        backend, events = _backend(spawner)
        await backend.speak("hello", index=3, token=9, rate=1.0)
        assert backend.is_speaking
        spawner.processes[0].exit(0)
        await settle()
        assert [event.kind for event in events] == [EventKind.STARTED, EventKind.FINISHED]
        assert all(event.index == 3 and event.token == 9 for event in events)
        assert not backend.is_speaking

    asyncio.run(scenario())


@pytest.mark.skipif(not hasattr(signal, "SIGSTOP"), reason="job control signals unavailable")
def test_pause_and_resume_signal_the_process():
    async def scenario():
        spawner = _Spawner()
        backend, events = _backend(spawner)
        await backend.speak("hello", index=0, token=1, rate=1.0)
        assert backend.pause()
        assert backend.is_paused
        assert not backend.pause()
        assert backend.resume()
        assert not backend.resume()
        process = spawner.processes[0]
        assert process.signals == [signal.SIGSTOP, signal.SIGCONT]
        assert [event.kind for event in events] == [
            EventKind.STARTED,
            EventKind.PAUSED,
            EventKind.RESUMED,
        ]
        await backend.close()

    asyncio.run(scenario())


def test_stop_reports_cancelled():
    async def scenario():
        spawner = _Spawner()
        backend, events = _backend(spawner)
        await backend.speak("hello", index=0, token=1, rate=1.0)
        backend.stop()
        await settle()
        assert spawner.processes[0].terminated
        assert events[-1].kind is EventKind.CANCELLED

    asyncio.run(scenario())


def test_nonzero_exit_reports_cancelled():
    async def scenario():
        spawner = _Spawner()
        backend, events = _backend(spawner)
        await backend.speak("hello", index=0, token=1, rate=1.0)
        spawner.processes[0].exit(1)
        await settle()
        assert events[-1].kind is EventKind.CANCELLED

    asyncio.run(scenario())


def test_new_utterance_replaces_current():
    async def scenario():
        spawner = _Spawner()
        backend, events = _backend(spawner)
        await backend.speak("one", index=0, token=1, rate=1.0)
        await backend.speak("two", index=1, token=2, rate=1.0)
        await settle()
        assert spawner.processes[0].terminated
        assert (EventKind.CANCELLED, 1) in [(event.kind, event.token) for event in events]
        assert backend.is_speaking
        await backend.close()

    asyncio.run(scenario())


def test_spawn_failure_raises_backend_unavailable():
    async def failing_spawn(*argv, **kwargs):
        raise FileNotFoundError(argv[0])

    async def scenario():
        backend = SystemSpeechBackend(spawn=failing_spawn)
        with pytest.raises(BackendUnavailableError):
            await backend.speak("hello", index=0, token=1, rate=1.0)

    asyncio.run(scenario())


def test_detect_speech_command(monkeypatch):
    available = {"espeak-ng"}
    monkeypatch.setattr(
        "readaloud.local_backend.shutil.which",
        lambda name: f"/usr/bin/{name}" if name in available else None,
    )
    assert detect_speech_command() == "espeak-ng"
    assert detect_speech_command("say") is None
