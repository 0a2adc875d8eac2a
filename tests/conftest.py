"""
Pytest configuration and in-memory fakes for the transcription core tests.
"""

import uuid

import numpy as np
import pytest

from adapters.local.memory import InMemorySpeakerLibrary, InMemoryVoiceProfileStore
from domain.errors import AudioFileError, MatchingError
from domain.models import (
    EMBEDDING_DIM,
    DiarizationResult,
    DiarizationSegment,
    DiarizationSpeakerProfile,
    KnownSpeaker,
    LocalModelPhase,
    LocalModelProgress,
    Speaker,
    TranscriptionPhase,
    TranscriptionProgressInfo,
    TranscriptSegment,
    VoiceProfile,
)
from ports.audio import AudioProcessingPort
from ports.diarization import DiarizationPort
from ports.transcription import ProviderKind, TranscriptionPort


def make_embedding(seed: int) -> list[float]:
    """Deterministic random 256-dim embedding."""
    rng = np.random.default_rng(seed)
    return rng.normal(size=EMBEDDING_DIM).tolist()


def blend(a: list[float], b: list[float], weight: float) -> list[float]:
    """Unit vector pointing between two embeddings; weight 0 gives a, 1 gives b."""
    va = np.asarray(a) / np.linalg.norm(a)
    vb = np.asarray(b) / np.linalg.norm(b)
    mixed = (1 - weight) * va + weight * vb
    return (mixed / np.linalg.norm(mixed)).tolist()


class FakeAudio(AudioProcessingPort):
    def __init__(self, chunks: int = 1, sizes=None, missing=()):
        self.chunks = chunks
        self.sizes = sizes or {}
        self.missing = set(missing)

    def convert_to_wav(self, input_path, sample_rate=16000):
        if input_path in self.missing:
            raise AudioFileError(f"Audio file not found: {input_path}")
        return input_path

    def split_into_chunks(self, audio_path, chunk_duration=500):
        if self.chunks == 1:
            return [audio_path]
        return [f"{audio_path}#{i}" for i in range(self.chunks)]

    def file_size(self, audio_path):
        if audio_path in self.missing:
            raise AudioFileError(f"Audio file not readable: {audio_path}")
        return self.sizes.get(audio_path, 1024)


class FakeProvider(TranscriptionPort):
    """Returns canned (segments, speakers) per path, or raises a canned error."""

    def __init__(self, outputs=None, errors=None, kind=ProviderKind.LOCAL, loaded=True, progress=None):
        self.outputs = outputs or {}
        self.errors = errors or {}
        self.kind = kind
        self.loaded = loaded
        self.progress = progress or []
        self.calls = []

    def transcribe(self, audio_path, language=None, diarize=False, on_progress=None, cancel=None):
        self.calls.append(audio_path)
        for update in self.progress:
            if on_progress:
                on_progress(update)
        if audio_path in self.errors:
            raise self.errors[audio_path]
        segments, speakers = self.outputs.get(audio_path, ([], []))
        return [TranscriptSegment(**vars(s)) for s in segments], list(speakers)

    def model_name(self):
        return "fake-model"

    def is_loaded(self):
        return self.loaded


class FakeDiarization(DiarizationPort):
    def __init__(self, result=None, error=None):
        self.result = result or DiarizationResult()
        self.error = error
        self.calls = 0

    def load(self, **kwargs):
        pass

    def is_loaded(self):
        return True

    def process_audio_file(self, audio_path):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def diarization_result(turns, embeddings):
    """Build a DiarizationResult from (label, start, end) turns and label -> embedding."""
    segments = [DiarizationSegment(start=s, end=e, speaker=label, embedding=embeddings.get(label))
                for label, s, e in turns]
    profiles = {}
    for label, emb in embeddings.items():
        duration = sum(e - s for lab, s, e in turns if lab == label)
        profiles[label] = DiarizationSpeakerProfile(speaker=label, embedding=emb, total_duration=duration)
    return DiarizationResult(segments=segments, speaker_profiles=profiles)


@pytest.fixture
def profile_store():
    return InMemoryVoiceProfileStore()


@pytest.fixture
def alice():
    return KnownSpeaker(name="Alice", color="#6366F1")


@pytest.fixture
def bob():
    return KnownSpeaker(name="Bob", color="#84CC16")


@pytest.fixture
def library(alice, bob):
    return InMemorySpeakerLibrary([alice, bob])


@pytest.fixture
def alice_embedding():
    return make_embedding(1)


@pytest.fixture
def bob_embedding():
    return make_embedding(2)


@pytest.fixture
def trained_store(profile_store, alice, bob, alice_embedding, bob_embedding):
    """Profile store with one trained profile each for Alice and Bob."""
    profile_store.save_profile(VoiceProfile(speaker_id=alice.id, embedding=alice_embedding, sample_count=3))
    profile_store.save_profile(VoiceProfile(speaker_id=bob.id, embedding=bob_embedding, sample_count=3))
    return profile_store


@pytest.fixture
def local_progress():
    return [
        LocalModelProgress(LocalModelPhase.LOADING_MODEL, 0.0),
        LocalModelProgress(LocalModelPhase.PROCESSING, 0.5),
        LocalModelProgress(LocalModelPhase.COMPLETED, 1.0),
    ]


@pytest.fixture
def session_id():
    return uuid.uuid4()


def info(phase=TranscriptionPhase.PREPARING, upload=0.0, **kwargs):
    return TranscriptionProgressInfo(phase=phase, upload_progress=upload, **kwargs)


def seg(timestamp, text="hello there", speaker_id=None, **kwargs):
    return TranscriptSegment(timestamp=timestamp, text=text, speaker_id=speaker_id, **kwargs)


def spk(speaker_id, **kwargs):
    return Speaker(id=speaker_id, **kwargs)
