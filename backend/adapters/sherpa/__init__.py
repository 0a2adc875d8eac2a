"""Sherpa-ONNX local batch ASR with optional hybrid diarization."""

from .transcription import SherpaTranscriptionAdapter, merge_diarization

__all__ = ["SherpaTranscriptionAdapter", "merge_diarization"]
