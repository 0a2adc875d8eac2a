"""TranscriptionPort — abstract interface for speech-to-text providers."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional, Union

from domain.cancellation import CancelToken
from domain.models import LocalModelProgress, Speaker, TranscriptionProgressInfo, TranscriptSegment

ProviderProgress = Union[TranscriptionProgressInfo, LocalModelProgress]
ProgressCallback = Callable[[ProviderProgress], None]
ChunkProgressCallback = Callable[[TranscriptionProgressInfo, int, int], None]


class ProviderKind(str, Enum):
    CLOUD = "cloud"
    LOCAL = "local"


class TranscriptionPort(ABC):
    kind: ProviderKind = ProviderKind.LOCAL

    @abstractmethod
    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
        diarize: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[TranscriptSegment], list[Speaker]]:
        """Transcribe an audio file. Returns (segments, speakers) in emission order.

        Raises ProviderError with a user-presentable detailed description.
        """

    @abstractmethod
    def model_name(self) -> str:
        """Return the human-readable model/provider name."""

    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether the provider is configured and ready (model loaded, key present)."""


class ChunkedTranscriptionPort(TranscriptionPort):
    """Provider that uploads audio in chunks and reports per-chunk progress."""

    kind = ProviderKind.CLOUD

    @abstractmethod
    def transcribe_chunked(
        self,
        audio_path: str,
        language: Optional[str] = None,
        diarize: bool = False,
        on_chunk_progress: Optional[ChunkProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[TranscriptSegment], list[Speaker]]:
        """Transcribe chunk by chunk, emitting (info, chunk_index, total_chunks)."""

    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
        diarize: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[TranscriptSegment], list[Speaker]]:
        def _forward(info: TranscriptionProgressInfo, index: int, total: int) -> None:
            if on_progress:
                on_progress(info)

        return self.transcribe_chunked(audio_path, language, diarize, _forward, cancel)
