"""
Custom exception hierarchy for readaloud.
"""

from __future__ import annotations

from dataclasses import dataclass


class ReadAloudError(Exception):
    """Base class for readaloud exceptions."""


class AudioDeviceError(ReadAloudError):
    """Raised when audio playback fails."""


class ProviderError(ReadAloudError):
    """Base class for synthesis failures (a failed render)."""


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider cannot be established."""


@dataclass
class ProviderRateLimitError(ProviderError):
    retry_after: float | None = None


class ProviderAuthError(ProviderError):
    """Raised when authentication with the provider fails or the quota is exhausted."""


class ProviderNetworkError(ProviderError):
    """Raised when transient network issues occur."""


class MalformedResponseError(ProviderError):
    """Raised when the provider answers with a payload we cannot decode."""


class BackendUnavailableError(ReadAloudError):
    """Raised when no synthesis backend can be selected for the configuration."""


class StaleRenderError(ReadAloudError):
    """Raised to waiters of a render that finished after its document was replaced."""


@dataclass
class ContentTooLargeError(ReadAloudError):
    index: int
    length: int
    limit: int

    def __str__(self) -> str:
        return (
            f"Paragraph {self.index + 1} is too long for speech synthesis "
            f"({self.length} chars, limit {self.limit}). Skip to continue."
        )
