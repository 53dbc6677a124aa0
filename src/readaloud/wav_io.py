"""
PCM16 mono WAV encoding and decoding for rendered paragraphs.
"""

from __future__ import annotations

import struct
import wave
from dataclasses import dataclass
from pathlib import Path

from .errors import AudioDeviceError


@dataclass(frozen=True)
class WavData:
    pcm: bytes
    sample_rate: int
    channels: int = 1

    @property
    def duration_seconds(self) -> float:
        frame_bytes = 2 * self.channels
        if self.sample_rate <= 0:
            return 0.0
        return len(self.pcm) / frame_bytes / self.sample_rate


def pcm16_to_wav(pcm_bytes: bytes, sample_rate: int) -> bytes:
    """Wrap mono PCM16 samples in a canonical 44-byte RIFF header."""
    if len(pcm_bytes) % 2 != 0:
        raise ValueError("PCM16 payload length must be even (2 bytes per sample).")

    data_chunk_size = len(pcm_bytes)
    header = b"".join(
        [
            b"RIFF",
            struct.pack("<I", 36 + data_chunk_size),
            b"WAVE",
            b"fmt ",
            struct.pack("<I", 16),  # PCM fmt chunk length
            struct.pack("<HHIIHH", 1, 1, sample_rate, sample_rate * 2, 2, 16),
            b"data",
            struct.pack("<I", data_chunk_size),
        ]
    )
    return header + pcm_bytes


def read_wav(path: str | Path) -> WavData:
    """Load a 16-bit WAV file, raising `AudioDeviceError` for unplayable input."""
    try:
        with wave.open(str(path), "rb") as reader:
            if reader.getsampwidth() != 2:
                raise AudioDeviceError(
                    f"Unsupported sample width {reader.getsampwidth()} in {path}."
                )
            return WavData(
                pcm=reader.readframes(reader.getnframes()),
                sample_rate=reader.getframerate(),
                channels=reader.getnchannels(),
            )
    except (OSError, EOFError, wave.Error) as exc:
        raise AudioDeviceError(f"Cannot read audio resource {path}: {exc}") from exc
