"""DiarizationPort — abstract interface for local speaker diarization."""

from abc import ABC, abstractmethod
from typing import Optional

from domain.models import DiarizationResult


class DiarizationPort(ABC):
    @abstractmethod
    def load(self, **kwargs) -> None:
        """Load the diarization pipeline."""

    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether the diarization pipeline is loaded and ready."""

    @abstractmethod
    def process_audio_file(self, audio_path: str) -> DiarizationResult:
        """Diarize an audio file and extract one embedding per local speaker.

        Raises MatchingError when diarization fails and AudioFileError when the
        file cannot be read.
        """

    def speaker_at_time(
        self, result: DiarizationResult, time: float, tolerance: float = 1.0
    ) -> Optional[str]:
        """Speaker whose span covers `time`, else the nearest span edge within tolerance."""
        for seg in result.segments:
            if seg.start <= time <= seg.end:
                return seg.speaker

        nearest = None
        nearest_distance = float("inf")
        for seg in result.segments:
            distance = min(abs(time - seg.start), abs(time - seg.end))
            if distance < nearest_distance and distance <= tolerance:
                nearest_distance = distance
                nearest = seg
        return nearest.speaker if nearest else None

    def speaker_at_time_with_carry_forward(
        self, result: DiarizationResult, time: float
    ) -> Optional[str]:
        """Like speaker_at_time, but a gap inherits the most recent preceding span."""
        speaker = self.speaker_at_time(result, time, tolerance=0.5)
        if speaker is not None:
            return speaker

        for seg in sorted(result.segments, key=lambda s: s.end, reverse=True):
            if seg.end <= time:
                return seg.speaker

        # Before every span: fall back to the first speaker
        return result.segments[0].speaker if result.segments else None
