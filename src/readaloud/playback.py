"""
Audio player for rendered paragraphs, implemented with sounddevice.

One WAV resource is loaded at a time and streamed through a callback-driven
`RawOutputStream`. The playback rate is applied by opening the stream at
`sample_rate * rate`, so speed changes also shift pitch. PortAudio failures are
mapped to `AudioDeviceError` like the rest of the application expects.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

import sounddevice as sd

from .backend_base import AudioResource
from .errors import AudioDeviceError
from .wav_io import WavData, read_wav

logger = logging.getLogger(__name__)


class SoundDevicePlayer:
    """Plays one `AudioResource` at a time; `on_finished` fires on the audio thread."""

    def __init__(
        self,
        *,
        device: int | str | None = None,
        blocksize: int = 0,
        reader: Callable[..., WavData] = read_wav,
    ) -> None:
        self._device = device
        self._blocksize = blocksize
        self._reader = reader
        self._lock = threading.Lock()
        self._audio: WavData | None = None
        self._position = 0
        self._on_finished: Callable[[], None] | None = None
        self._stream: sd.RawOutputStream | None = None
        self._stream_generation = 0
        self._rate = 1.0
        self._ended = False
        self._playing = False

    @property
    def has_item(self) -> bool:
        return self._audio is not None

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def position_seconds(self) -> float:
        audio = self._audio
        if audio is None or audio.sample_rate <= 0:
            return 0.0
        return self._position / (2 * audio.channels) / audio.sample_rate

    def load(self, resource: AudioResource, on_finished: Callable[[], None]) -> None:
        self.stop()
        audio = self._reader(resource.path)
        with self._lock:
            self._audio = audio
            self._position = 0
            self._ended = False
            self._on_finished = on_finished
        logger.debug(
            "Loaded %s (%.2fs at %s Hz)",
            resource.resource_id,
            audio.duration_seconds,
            audio.sample_rate,
        )

    def play(self, rate: float) -> None:
        if self._audio is None:
            raise AudioDeviceError("No audio resource loaded.")
        if self._ended:
            return
        if self._stream is None or rate != self._rate:
            self._close_stream()
            self._rate = rate
            self._open_stream()
        try:
            self._stream.start()
        except sd.PortAudioError as exc:  # pragma: no cover - hardware dependent
            logger.error("Failed to start audio stream: %s", exc)
            raise AudioDeviceError(str(exc)) from exc
        self._playing = True

    def pause(self) -> None:
        if self._stream is None or not self._playing:
            return
        self._playing = False
        try:
            self._stream.stop()
        except sd.PortAudioError as exc:  # pragma: no cover - hardware dependent
            logger.error("Failed to pause audio stream: %s", exc)
            raise AudioDeviceError(str(exc)) from exc

    def set_rate(self, rate: float) -> None:
        if rate == self._rate:
            return
        was_playing = self._playing
        self._close_stream()
        self._rate = rate
        if was_playing and self._audio is not None and not self._ended:
            self.play(rate)

    def stop(self) -> None:
        self._close_stream()
        with self._lock:
            self._audio = None
            self._position = 0
            self._on_finished = None
            self._ended = False

    def close(self) -> None:
        self.stop()

    # ------------------------------------------------------------------ #

    def _open_stream(self) -> None:
        audio = self._audio
        assert audio is not None
        self._stream_generation += 1
        generation = self._stream_generation
        try:
            self._stream = sd.RawOutputStream(
                samplerate=max(1, int(audio.sample_rate * self._rate)),
                channels=audio.channels,
                dtype="int16",
                blocksize=self._blocksize,
                device=self._device,
                callback=self._fill,
                finished_callback=lambda: self._on_stream_finished(generation),
            )
        except sd.PortAudioError as exc:  # pragma: no cover - hardware dependent
            self._stream = None
            logger.error("Failed to open audio stream: %s", exc)
            raise AudioDeviceError(str(exc)) from exc
        logger.debug("Audio stream opened (rate=%.2f, device=%s)", self._rate, self._device)

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        self._playing = False
        if stream is None:
            return
        # Invalidate the finished callback of the stream being torn down.
        self._stream_generation += 1
        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError as exc:  # pragma: no cover - hardware dependent
            logger.error("Failed to close audio stream: %s", exc)
            raise AudioDeviceError(str(exc)) from exc

    def _fill(self, outdata, frames: int, time_info, status) -> None:
        if status:
            logger.debug("Audio callback status: %s", status)
        with self._lock:
            audio = self._audio
            if audio is None:
                outdata[:] = b"\x00" * len(outdata)
                raise sd.CallbackStop
            wanted = frames * 2 * audio.channels
            chunk = audio.pcm[self._position : self._position + wanted]
            self._position += len(chunk)
        outdata[: len(chunk)] = chunk
        if len(chunk) < wanted:
            outdata[len(chunk) :] = b"\x00" * (wanted - len(chunk))
            raise sd.CallbackStop

    def _on_stream_finished(self, generation: int) -> None:
        with self._lock:
            audio = self._audio
            if (
                generation != self._stream_generation
                or audio is None
                or self._position < len(audio.pcm)
                or self._ended
            ):
                return
            self._ended = True
            self._playing = False
            callback = self._on_finished
        if callback is not None:
            callback()
