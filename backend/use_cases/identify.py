"""SpeakerIdentifier — resolves per-job speakers against the voice profile library.

Accepts ports via dependency injection. Every failure of local diarization
degrades to "no match"; identification never fails a transcription.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from domain.errors import AudioFileError, MatchingError
from domain.matching import DEFAULT_MATCH_THRESHOLD, as_embedding, identify
from domain.models import DiarizationResult, Speaker, SpeakerMatch, TranscriptSegment
from ports.diarization import DiarizationPort
from ports.profile_store import VoiceProfileStorePort
from ports.speaker_library import SpeakerLibraryPort

logger = logging.getLogger(__name__)

# Session segment start within this many seconds of a local span start counts as the same turn.
TIMESTAMP_ALIGNMENT_TOLERANCE = 1.0


@dataclass
class IdentificationOutcome:
    speakers: list[Speaker]
    matches: dict[int, SpeakerMatch] = field(default_factory=dict)
    assigned: int = 0
    low_confidence: int = 0

    @property
    def summary(self) -> str:
        if not self.assigned:
            return "No voice matches found"
        if self.low_confidence:
            return f"Identified {self.assigned} speaker(s) by voice ({self.low_confidence} low confidence)"
        return f"Identified {self.assigned} speaker(s) by voice"


class SpeakerIdentifier:
    def __init__(
        self,
        profile_store: VoiceProfileStorePort,
        library: SpeakerLibraryPort,
        diarization: Optional[DiarizationPort] = None,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
    ):
        self._profiles = profile_store
        self._library = library
        self._diarization = diarization
        self._threshold = threshold

    def identify(self, embedding, speaker_id: Optional[int] = None) -> Optional[SpeakerMatch]:
        """Match one embedding against every stored profile."""
        names = {s.id: s.name for s in self._library.list_speakers()}
        return identify(embedding, self._profiles.list_profiles(), self._threshold, speaker_id, names)

    def _diarize(self, audio_path: str) -> Optional[DiarizationResult]:
        if self._diarization is None or not self._diarization.is_loaded():
            logger.warning("Local diarization unavailable, skipping speaker matching")
            return None
        try:
            return self._diarization.process_audio_file(audio_path)
        except (MatchingError, AudioFileError) as e:
            logger.warning(f"Speaker matching skipped: {e}")
            return None

    def match_provider_speakers(
        self,
        audio_path: str,
        segments: list[TranscriptSegment],
        speakers: list[Speaker],
    ) -> tuple[list[Speaker], list[SpeakerMatch]]:
        """Map provider speakers to local diarization speakers, then to known profiles.

        The first segment of each provider speaker decides which local speaker
        it is. Matched speakers get name, colour and embedding; unmatched ones
        still get the local embedding. When diarization is unavailable or
        fails, speakers are returned unchanged.
        """
        result = self._diarize(audio_path)
        if result is None or not result.segments:
            return speakers, []

        mapping: dict[int, str] = {}
        for seg in segments:
            if seg.speaker_id is None or seg.speaker_id in mapping:
                continue
            label = self._diarization.speaker_at_time_with_carry_forward(result, seg.timestamp)
            if label is not None:
                mapping[seg.speaker_id] = label
        logger.info(f"Mapped {len(mapping)} provider speaker(s) to local speakers")

        profiles = self._profiles.list_profiles()
        known = {s.id: s for s in self._library.list_speakers()}
        names = {sid: s.name for sid, s in known.items()}

        updated: list[Speaker] = []
        matches: list[SpeakerMatch] = []
        for speaker in speakers:
            local = result.speaker_profiles.get(mapping.get(speaker.id, ""))
            embedding = as_embedding(local.embedding) if local else None
            if embedding is None:
                updated.append(speaker)
                continue

            match = identify(embedding, profiles, self._threshold, speaker.id, names)
            if match is None:
                updated.append(dataclasses.replace(speaker, embedding=embedding.tolist()))
                continue

            matches.append(match)
            known_speaker = known.get(match.matched_profile_id)
            updated.append(dataclasses.replace(
                speaker,
                name=known_speaker.name if known_speaker else speaker.name,
                color=known_speaker.color if known_speaker else speaker.color,
                embedding=embedding.tolist(),
            ))
        return updated, matches

    def auto_identify_session(
        self,
        audio_path: Optional[str],
        segments: list[TranscriptSegment],
        speakers: list[Speaker],
    ) -> dict[int, SpeakerMatch]:
        """Match a finished session's speakers. Returns session speaker id -> match.

        Speakers' own embeddings are tried first; if none of them matches, the
        audio is diarized and each matched local speaker is assigned to the
        first session speaker with a segment starting within a second of one
        of its turns.
        """
        matches: dict[int, SpeakerMatch] = {}
        for speaker in speakers:
            if as_embedding(speaker.embedding) is None:
                continue
            match = self.identify(speaker.embedding, speaker_id=speaker.id)
            if match:
                matches[speaker.id] = match
        if matches:
            logger.info(f"Using {len(matches)} embedding-based match(es)")
            return matches

        profiles = [p for p in self._profiles.list_profiles() if p.has_embedding]
        if not profiles or not audio_path:
            return matches

        result = self._diarize(audio_path)
        if result is None:
            return matches

        for label, local in result.speaker_profiles.items():
            match = self.identify(local.embedding)
            if match is None:
                continue
            turn_starts = [seg.start for seg in result.segments if seg.speaker == label]
            for speaker in speakers:
                aligned = any(
                    abs(seg.timestamp - start) < TIMESTAMP_ALIGNMENT_TOLERANCE
                    for seg in segments
                    if seg.speaker_id == speaker.id
                    for start in turn_starts
                )
                if aligned:
                    matches[speaker.id] = dataclasses.replace(match, speaker_id=speaker.id)
                    break
        logger.info(f"Diarization-based identification matched {len(matches)} speaker(s)")
        return matches

    def apply_matches(self, speakers: list[Speaker], matches: dict[int, SpeakerMatch]) -> IdentificationOutcome:
        """Name and colour matched speakers after their library entry and mark it used."""
        outcome = IdentificationOutcome(speakers=list(speakers), matches=dict(matches))
        for i, speaker in enumerate(outcome.speakers):
            match = matches.get(speaker.id)
            if match is None:
                continue
            known = self._library.get_speaker(match.matched_profile_id)
            if known is None:
                logger.warning(f"Matched profile {match.matched_profile_id} has no library entry")
                continue
            outcome.speakers[i] = dataclasses.replace(speaker, name=known.name, color=known.color)
            self._library.mark_used(known.id)
            outcome.assigned += 1
            if match.is_low_confidence:
                outcome.low_confidence += 1
        logger.info(outcome.summary)
        return outcome
