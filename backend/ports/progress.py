"""ProgressPort — sink for progress updates accepted by the aggregator."""

from abc import ABC, abstractmethod
from typing import Optional

from domain.models import LocalModelProgress, TranscriptionProgressInfo, TranscriptSource


class ProgressPort(ABC):
    @abstractmethod
    def report(
        self,
        source: TranscriptSource,
        info: Optional[TranscriptionProgressInfo],
        local: Optional[LocalModelProgress] = None,
    ) -> None:
        """Report an accepted progress update for one source."""
