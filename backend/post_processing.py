"""Post-processing over per-source transcription results.

Functions for merging per-source segments into one transcript with
collision-free speaker ids, applying identified names to speakers, and
speaker statistics.
"""

import dataclasses
import logging
from typing import Iterable, Optional

from domain.models import (
    Speaker,
    SourceResult,
    SpeakerMatch,
    TranscriptSegment,
    TranscriptSource,
)
from ports.speaker_library import SpeakerLibraryPort

logger = logging.getLogger(__name__)

# System-audio speaker ids start at least this far above microphone ids.
SYSTEM_SPEAKER_OFFSET = 1000


def _offset_speaker(speaker: Speaker, offset: int) -> Speaker:
    # Colour was derived from the pre-offset id; keep it
    return dataclasses.replace(speaker, id=speaker.id + offset)


def _offset_segment(segment: TranscriptSegment, offset: int) -> TranscriptSegment:
    if segment.speaker_id is None:
        return segment
    return dataclasses.replace(segment, speaker_id=segment.speaker_id + offset)


def merge_source_results(
    results: Iterable[SourceResult],
) -> tuple[list[TranscriptSegment], list[Speaker]]:
    """Combine per-source results into one chronologically ordered transcript.

    Sources are processed microphone, then system, then unknown. System
    speaker ids (on both Speaker.id and TranscriptSegment.speaker_id) are
    shifted by the running offset, which starts at 1000 and becomes
    `(max mic id + 1) + 1000` after the microphone source; after each source
    it advances past the highest id assigned so far. Failed sources are
    skipped.

    Segments are stable-sorted by timestamp, so ties keep per-source emission
    order with microphone first. Speakers are de-duplicated by id only; the
    first one wins.

    Args:
        results: Per-source results in any order.

    Returns:
        (segments, speakers) of the merged transcript.
    """
    ordered = sorted((r for r in results if r.succeeded), key=lambda r: r.source.priority)

    offset = SYSTEM_SPEAKER_OFFSET
    highest_assigned = -1
    merged_segments: list[TranscriptSegment] = []
    merged_speakers: list[Speaker] = []
    seen_ids: set[int] = set()

    for result in ordered:
        shift = offset if result.source == TranscriptSource.SYSTEM else 0
        speakers = [_offset_speaker(s, shift) if shift else s for s in result.speakers]
        segments = [_offset_segment(s, shift) if shift else s for s in result.segments]

        source_ids = [s.id for s in speakers] + [s.speaker_id for s in segments if s.speaker_id is not None]
        if source_ids:
            highest_assigned = max(highest_assigned, max(source_ids))

        if result.source == TranscriptSource.MICROPHONE:
            offset = (highest_assigned + 1) + SYSTEM_SPEAKER_OFFSET
        else:
            offset = max(offset, highest_assigned + 1)

        if shift:
            logger.debug(f"Offset {result.source.value} speaker ids by {shift}")

        merged_segments.extend(segments)
        for speaker in speakers:
            if speaker.id not in seen_ids:
                seen_ids.add(speaker.id)
                merged_speakers.append(speaker)

    merged_segments.sort(key=lambda s: s.timestamp)
    logger.info(
        f"Merged {len(ordered)} source(s): {len(merged_segments)} segments, {len(merged_speakers)} speakers"
    )
    return merged_segments, merged_speakers


def apply_speaker_matches(
    speakers: list[Speaker],
    matches: Iterable[SpeakerMatch],
    library: SpeakerLibraryPort,
) -> list[Speaker]:
    """Name and colour speakers after the library speakers they matched.

    Returns new Speaker values; speakers without a match are returned as-is.
    """
    by_speaker: dict[int, SpeakerMatch] = {}
    for match in matches:
        if match.speaker_id is None:
            continue
        current = by_speaker.get(match.speaker_id)
        if current is None or match.confidence > current.confidence:
            by_speaker[match.speaker_id] = match

    updated = []
    for speaker in speakers:
        match = by_speaker.get(speaker.id)
        known = library.get_speaker(match.matched_profile_id) if match else None
        if known is None:
            updated.append(speaker)
            continue
        updated.append(dataclasses.replace(speaker, name=known.name, color=known.color))
    return updated


def speaker_statistics(segments: list[TranscriptSegment]) -> Optional[dict]:
    """Compute per-speaker segment count, talk time and word count.

    Talk time only counts segments with a known end.

    Returns:
        Dict with per-speaker stats and total_speakers count,
        or None if no segment carries a speaker.
    """
    speakers: dict[int, dict] = {}

    for seg in segments:
        if seg.speaker_id is None:
            continue
        data = speakers.setdefault(seg.speaker_id, {"segments": 0, "duration": 0.0, "word_count": 0})
        data["segments"] += 1
        if seg.end is not None:
            data["duration"] += max(0.0, seg.end - seg.timestamp)
        data["word_count"] += len(seg.text.split())

    if not speakers:
        return None

    total_talk = sum(s["duration"] for s in speakers.values())

    stats = {}
    for spk, data in speakers.items():
        percentage = (data["duration"] / total_talk * 100) if total_talk > 0 else 0
        stats[spk] = {
            "segments": data["segments"],
            "duration": round(data["duration"], 1),
            "percentage": round(percentage, 1),
            "word_count": data["word_count"],
        }

    return {
        "speakers": stats,
        "total_speakers": len(speakers),
    }
