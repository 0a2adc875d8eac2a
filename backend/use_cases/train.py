"""VoiceProfileTrainer — incrementally builds known speakers' voice profiles.

Each training event contributes one L2-normalised embedding. The stored
embedding is the component-wise running mean of every contribution, and
sample_count/total_duration always equal the count and summed duration of
the speaker's training records. Training events for the same speaker are
serialised by a per-speaker lock.
"""

import copy
import logging
import threading
import uuid
from collections import Counter
from typing import Optional, Sequence

from domain.errors import AudioFileError, MatchingError
from domain.matching import as_embedding, l2_normalize, running_mean
from domain.models import (
    DiarizationResult,
    QualityTier,
    SegmentTimeRange,
    SessionAudio,
    Speaker,
    SpeakerMatch,
    TranscriptSegment,
    TranscriptSource,
    VoiceProfile,
    VoiceTrainingRecord,
    utcnow,
)
from ports.diarization import DiarizationPort
from ports.profile_store import VoiceProfileStorePort
from ports.speaker_library import SpeakerLibraryPort

logger = logging.getLogger(__name__)

SECONDS_PER_WORD = 0.3
MAX_SEGMENT_SECONDS = 10.0
# Minimum overlap for a local speaker to count as the trained speaker.
MIN_OVERLAP_SECONDS = 1.0


def segment_time_ranges(segments: Sequence[TranscriptSegment]) -> list[SegmentTimeRange]:
    """Time ranges for training, one per segment with known or estimated length.

    Length is `end - timestamp` when the end is known, else 0.3s per word;
    either way capped at 10s.
    """
    ranges = []
    for seg in segments:
        if seg.end is not None and seg.end > seg.timestamp:
            length = seg.end - seg.timestamp
        elif seg.text.strip():
            length = len(seg.text.split()) * SECONDS_PER_WORD
        else:
            continue
        ranges.append(SegmentTimeRange(seg.timestamp, seg.timestamp + min(length, MAX_SEGMENT_SECONDS)))
    return ranges


def best_overlap_embedding(
    result: DiarizationResult,
    ranges: Sequence[SegmentTimeRange],
) -> Optional[list[float]]:
    """Embedding of the local speaker overlapping the ranges most, if over a second."""
    best_label = None
    best_overlap = 0.0
    for label in result.speaker_profiles:
        overlap = 0.0
        for turn in result.segments:
            if turn.speaker != label:
                continue
            for r in ranges:
                overlap += max(0.0, min(r.end, turn.end) - max(r.start, turn.start))
        if best_label is None or overlap > best_overlap:
            best_label, best_overlap = label, overlap

    if best_label is None or best_overlap <= MIN_OVERLAP_SECONDS:
        logger.warning(f"No local speaker overlaps the training segments (best={best_overlap:.1f}s)")
        return None
    logger.info(f"Using embedding of local speaker {best_label} (overlap {best_overlap:.1f}s)")
    return result.speaker_profiles[best_label].embedding


class VoiceProfileTrainer:
    def __init__(
        self,
        profile_store: VoiceProfileStorePort,
        library: SpeakerLibraryPort,
        diarization: Optional[DiarizationPort] = None,
    ):
        self._profiles = profile_store
        self._library = library
        self._diarization = diarization
        self._locks_guard = threading.Lock()
        self._locks: dict[uuid.UUID, threading.Lock] = {}

    def _lock_for(self, known_speaker_id: uuid.UUID) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(known_speaker_id, threading.Lock())

    def train(
        self,
        known_speaker_id: uuid.UUID,
        embedding,
        duration: float,
        segment_ranges: Sequence[SegmentTimeRange] = (),
        session_id: Optional[uuid.UUID] = None,
        session_title: Optional[str] = None,
    ) -> bool:
        """Fold one embedding into the speaker's profile and append a training record.

        Returns False, writing nothing, when the embedding is not a valid
        256-dimensional vector.
        """
        vec = as_embedding(embedding)
        if vec is None:
            logger.warning(f"Invalid embedding for speaker {known_speaker_id}, not training")
            return False

        contribution = l2_normalize(vec)
        duration = max(0.0, float(duration))
        with self._lock_for(known_speaker_id):
            profile = self._profiles.get_profile(known_speaker_id)
            previous = copy.deepcopy(profile)
            if profile is None:
                profile = VoiceProfile(speaker_id=known_speaker_id, embedding=contribution)
                logger.info(f"Created voice profile for {known_speaker_id}")
            elif as_embedding(profile.embedding) is None:
                logger.warning(f"Stored embedding for {known_speaker_id} is unusable, restarting the mean")
                profile.embedding = contribution
            else:
                profile.embedding = running_mean(profile.embedding, profile.sample_count, contribution)
            profile.sample_count += 1
            profile.total_duration += duration
            profile.updated_at = utcnow()

            self._profiles.save_profile(profile)
            try:
                self._profiles.append_training_record(VoiceTrainingRecord(
                    speaker_id=known_speaker_id,
                    session_id=session_id or uuid.uuid4(),
                    segment_ranges=tuple(segment_ranges),
                    extracted_duration=duration,
                    session_title=session_title,
                ))
            except Exception:
                # Profile statistics must match the stored records
                logger.error(f"Could not record training for {known_speaker_id}, rolling back profile")
                if previous is None:
                    self._profiles.delete_profile(known_speaker_id)
                else:
                    self._profiles.save_profile(previous)
                raise
        logger.info(
            f"Trained {known_speaker_id}: {profile.sample_count} samples, "
            f"{profile.total_duration:.1f}s, quality={profile.quality.value}"
        )
        return True

    def train_from_session(
        self,
        known_speaker_id: uuid.UUID,
        speaker: Speaker,
        segments: Sequence[TranscriptSegment],
        audio_path: Optional[str],
        session_id: uuid.UUID,
        session_title: Optional[str] = None,
    ) -> bool:
        """Train from a speaker assigned in a session.

        Uses the speaker's own embedding when it has a valid one, else
        diarizes the audio and takes the local speaker that overlaps the
        speaker's segments most.
        """
        own = [seg for seg in segments if seg.speaker_id == speaker.id]
        if not own:
            logger.info(f"No segments for speaker {speaker.id}, nothing to train")
            return False

        ranges = segment_time_ranges(own)
        duration = sum(r.duration for r in ranges)

        embedding = speaker.embedding if as_embedding(speaker.embedding) is not None else None
        if embedding is None and audio_path and self._diarization is not None and self._diarization.is_loaded():
            try:
                embedding = best_overlap_embedding(self._diarization.process_audio_file(audio_path), ranges)
            except (MatchingError, AudioFileError) as e:
                logger.warning(f"Embedding extraction failed: {e}")

        if embedding is None:
            logger.warning(f"No embedding available for speaker {speaker.id}")
            return False
        return self.train(known_speaker_id, embedding, duration, ranges, session_id, session_title)

    def train_from_embedding(
        self,
        known_speaker_id: uuid.UUID,
        embedding,
        session_id: Optional[uuid.UUID] = None,
        session_title: Optional[str] = None,
    ) -> bool:
        return self.train(known_speaker_id, embedding, 0.0, (), session_id, session_title)

    def train_from_diarization(
        self,
        result: DiarizationResult,
        speaker_mapping: dict[str, str],
        session_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Train every local speaker mapped (label -> known speaker name) to the library."""
        trained = 0
        for label, local in result.speaker_profiles.items():
            name = speaker_mapping.get(label)
            if not name:
                continue
            known = self._library.find_by_name(name)
            if known is None:
                logger.warning(f"Known speaker '{name}' not found in library")
                continue
            if self.train(known.id, local.embedding, local.total_duration, session_id=session_id):
                trained += 1
        return trained

    def train_matched_speakers(
        self,
        matches: dict[int, SpeakerMatch],
        speakers: Sequence[Speaker],
        segments: Sequence[TranscriptSegment],
        session: SessionAudio,
    ) -> int:
        """Auto-train known speakers after identification. Returns how many were trained."""
        by_id = {s.id: s for s in speakers}
        trained = 0
        for speaker_id, match in matches.items():
            speaker = by_id.get(speaker_id)
            if speaker is None or self._library.get_speaker(match.matched_profile_id) is None:
                continue

            audio_path = audio_path_for_speaker(speaker_id, segments, session)
            if audio_path:
                ok = self.train_from_session(
                    match.matched_profile_id, speaker, segments, audio_path,
                    session.session_id, session.title,
                )
            elif as_embedding(speaker.embedding) is not None:
                ok = self.train_from_embedding(
                    match.matched_profile_id, speaker.embedding, session.session_id, session.title,
                )
            else:
                ok = False
            if ok:
                trained += 1

        if trained:
            logger.info(f"Auto-trained {trained} of {len(matches)} matched speaker(s)")
        return trained

    def reset(self, known_speaker_id: uuid.UUID) -> None:
        """Delete the profile and every training record of a speaker."""
        with self._lock_for(known_speaker_id):
            self._profiles.delete_profile(known_speaker_id)
            self._profiles.delete_training_records(known_speaker_id)
        logger.info(f"Reset voice profile for {known_speaker_id}")

    def quality(self, known_speaker_id: uuid.UUID) -> Optional[QualityTier]:
        profile = self._profiles.get_profile(known_speaker_id)
        return profile.quality if profile else None

    def profile_stats(self, known_speaker_id: uuid.UUID) -> Optional[tuple[int, float]]:
        profile = self._profiles.get_profile(known_speaker_id)
        if profile is None:
            return None
        return profile.sample_count, profile.total_duration

    def training_session_count(self, known_speaker_id: uuid.UUID) -> int:
        return len({r.session_id for r in self._profiles.training_records(known_speaker_id)})


def audio_path_for_speaker(
    speaker_id: int,
    segments: Sequence[TranscriptSegment],
    session: SessionAudio,
) -> Optional[str]:
    """Audio file holding most of a speaker's segments, preferring the microphone on ties."""
    counts = Counter(seg.source for seg in segments if seg.speaker_id == speaker_id)
    if counts[TranscriptSource.SYSTEM] > counts[TranscriptSource.MICROPHONE] and session.system_path:
        return session.system_path
    return session.mic_path or session.primary_path
