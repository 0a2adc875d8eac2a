"""Error taxonomy for the transcription core."""

from typing import Optional


class TranscriptionCoreError(Exception):
    """Base class for every error raised by the core."""


class ConfigurationError(TranscriptionCoreError):
    """Missing credentials or model not loaded. Raised before any job starts."""


class ProviderError(TranscriptionCoreError):
    """Transcription provider failure. Never retried by the core."""

    def __init__(self, message: str, detailed_description: Optional[str] = None):
        super().__init__(message)
        self.detailed_description = detailed_description or message


class AudioFileError(TranscriptionCoreError, OSError):
    """Audio file missing or unreadable. Degrades the affected source only."""


class MatchingError(TranscriptionCoreError):
    """Diarization or embedding extraction failure. Always non-fatal."""


class TranscriptionCancelled(TranscriptionCoreError):
    def __init__(self, message: str = "Transcription cancelled"):
        super().__init__(message)


def describe_error(error: BaseException) -> str:
    """User-presentable message for a failure, preferring provider detail."""
    if isinstance(error, ProviderError):
        return error.detailed_description
    return str(error) or type(error).__name__
