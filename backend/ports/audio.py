"""AudioProcessingPort — abstract interface for audio preprocessing."""

import os
from abc import ABC, abstractmethod

from domain.errors import AudioFileError


class AudioProcessingPort(ABC):
    @abstractmethod
    def convert_to_wav(self, input_path: str, sample_rate: int = 16000) -> str:
        """Convert audio to 16kHz mono WAV. Returns path to converted file."""

    @abstractmethod
    def split_into_chunks(
        self, audio_path: str, chunk_duration: int = 500
    ) -> list[str]:
        """Split audio into chunks. Returns list of chunk file paths."""

    def file_size(self, audio_path: str) -> int:
        try:
            return os.path.getsize(audio_path)
        except OSError as e:
            raise AudioFileError(f"Audio file not readable: {audio_path} ({e})") from e
