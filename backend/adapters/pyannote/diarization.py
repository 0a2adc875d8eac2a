"""PyannoteDiarizationAdapter — local diarization with per-speaker voice embeddings."""

import os
import logging
from typing import Optional

import numpy as np

from domain.errors import AudioFileError, MatchingError
from domain.matching import as_embedding
from domain.models import DiarizationResult, DiarizationSegment, DiarizationSpeakerProfile
from ports.diarization import DiarizationPort

logger = logging.getLogger(__name__)

PIPELINE_ID = "pyannote/speaker-diarization-3.1"


class PyannoteDiarizationAdapter(DiarizationPort):
    def __init__(self):
        self._pipeline = None

    def load(self, access_token: Optional[str] = None, device: str = "cpu", **kwargs) -> None:
        import torch

        try:
            from pyannote.audio import Pipeline

            token = access_token or os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_ACCESS_TOKEN")
            if not token:
                logger.error("No HuggingFace token available. Diarization disabled.")
                return

            self._pipeline = Pipeline.from_pretrained(PIPELINE_ID, use_auth_token=token)
            actual_device = device if device == "cuda" and torch.cuda.is_available() else "cpu"
            self._pipeline.to(torch.device(actual_device))
            logger.info(f"Diarization pipeline initialized on {actual_device}")

        except ImportError:
            logger.error("pyannote.audio not installed")
        except Exception as e:
            logger.error(f"Failed to init diarization: {e}")

    def process_audio_file(self, audio_path: str) -> DiarizationResult:
        if self._pipeline is None:
            raise MatchingError("Diarization pipeline not loaded")
        if not os.path.exists(audio_path):
            raise AudioFileError(f"Audio file not found: {audio_path}")

        try:
            annotation, embeddings = self._pipeline(audio_path, return_embeddings=True)
        except Exception as e:
            logger.error(f"Diarization failed: {e}")
            raise MatchingError(f"Diarization failed: {e}") from e

        # Embedding rows follow the order of annotation.labels()
        labels = annotation.labels()
        label_embeddings: dict[str, Optional[list[float]]] = {}
        for i, label in enumerate(labels):
            row = embeddings[i] if embeddings is not None and i < len(embeddings) else None
            vec = as_embedding(row)
            if vec is None and row is not None:
                logger.warning(f"Discarding unusable embedding for {label} (dim={np.asarray(row).size})")
            label_embeddings[label] = vec.tolist() if vec is not None else None

        segments: list[DiarizationSegment] = []
        durations: dict[str, float] = {}
        for turn, _, label in annotation.itertracks(yield_label=True):
            segments.append(DiarizationSegment(
                start=turn.start,
                end=turn.end,
                speaker=label,
                embedding=label_embeddings.get(label),
            ))
            durations[label] = durations.get(label, 0.0) + (turn.end - turn.start)

        segments.sort(key=lambda x: x.start)
        profiles = {
            label: DiarizationSpeakerProfile(speaker=label, embedding=emb, total_duration=durations.get(label, 0.0))
            for label, emb in label_embeddings.items()
            if emb is not None
        }
        result = DiarizationResult(segments=segments, speaker_profiles=profiles)
        logger.info(f"Diarized {os.path.basename(audio_path)}: {result.speaker_count} speakers, {len(segments)} turns")
        return result

    def is_loaded(self) -> bool:
        return self._pipeline is not None
