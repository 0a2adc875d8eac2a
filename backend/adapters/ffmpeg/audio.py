"""FFmpegAudioAdapter — WAV normalisation and chunk splitting via ffmpeg."""

import os
import math
import wave
import logging
import tempfile
import subprocess
from typing import Optional

from domain.errors import AudioFileError
from ports.audio import AudioProcessingPort

logger = logging.getLogger(__name__)


class FFmpegAudioAdapter(AudioProcessingPort):
    def __init__(self, temp_dir: Optional[str] = None):
        self._temp_dir = temp_dir

    def convert_to_wav(self, input_path: str, sample_rate: int = 16000) -> str:
        if not os.path.exists(input_path):
            raise AudioFileError(f"Audio file not found: {input_path}")

        temp_file = tempfile.NamedTemporaryFile(suffix=".wav", delete=False, dir=self._temp_dir)
        temp_file.close()
        output_path = temp_file.name

        try:
            cmd = [
                "ffmpeg", "-y",
                "-i", input_path,
                "-c:a", "pcm_s16le",
                "-ar", str(sample_rate),
                "-ac", "1",
                output_path,
            ]
            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode != 0:
                logger.error(f"Error converting audio: {result.stderr}")
                raise AudioFileError(f"Failed to convert {os.path.basename(input_path)}: {result.stderr.strip()}")
            return output_path

        except (AudioFileError, OSError):
            if os.path.exists(output_path):
                os.unlink(output_path)
            raise

    def duration(self, wav_path: str) -> float:
        try:
            with wave.open(wav_path, "rb") as wf:
                return wf.getnframes() / wf.getframerate()
        except (OSError, wave.Error) as e:
            raise AudioFileError(f"Cannot read WAV header of {wav_path}: {e}") from e

    def split_into_chunks(self, audio_path: str, chunk_duration: int = 500) -> list[str]:
        duration = self.duration(audio_path)
        logger.info(f"Audio duration: {duration:.2f} seconds")

        if duration <= chunk_duration:
            return [audio_path]

        num_chunks = math.ceil(duration / chunk_duration)
        logger.info(f"Splitting audio into {num_chunks} chunks of {chunk_duration}s")

        chunk_dir = tempfile.mkdtemp(dir=self._temp_dir)
        chunk_paths: list[str] = []

        for i in range(num_chunks):
            start_time = i * chunk_duration
            output_path = os.path.join(chunk_dir, f"chunk_{i}.wav")

            cmd = [
                "ffmpeg", "-y",
                "-ss", str(start_time),
                "-i", audio_path,
                "-t", str(chunk_duration),
                "-c:a", "pcm_s16le",
                "-ar", "16000",
                "-ac", "1",
                output_path,
            ]
            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode != 0:
                logger.error(f"Error splitting chunk {i}: {result.stderr}")
                raise AudioFileError(f"Failed to split audio at chunk {i}: {result.stderr.strip()}")

            chunk_paths.append(output_path)

        return chunk_paths
