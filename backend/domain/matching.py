"""Embedding maths: validity, cosine similarity and best-profile selection."""

import logging
import math
from typing import Iterable, Optional, Sequence

import numpy as np

from domain.models import EMBEDDING_DIM, SpeakerMatch, VoiceProfile

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.45


def as_embedding(embedding: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    """Return the embedding as a float64 vector, or None if it is not usable.

    Anything that is not exactly EMBEDDING_DIM long, contains NaN/inf, or has
    zero norm counts as absent.
    """
    if embedding is None:
        return None
    vec = np.asarray(embedding, dtype=np.float64).ravel()
    if vec.shape[0] != EMBEDDING_DIM:
        return None
    if not np.all(np.isfinite(vec)):
        return None
    if np.linalg.norm(vec) == 0.0:
        return None
    return vec


def is_valid_embedding(embedding: Optional[Sequence[float]]) -> bool:
    return as_embedding(embedding) is not None


def l2_normalize(embedding: Sequence[float]) -> list[float]:
    vec = np.asarray(embedding, dtype=np.float64)
    norm = np.linalg.norm(vec)
    if norm == 0.0:
        return vec.tolist()
    return (vec / norm).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """(a . b) / (|a| |b|). Returns NaN when either vector is invalid."""
    va = as_embedding(a)
    vb = as_embedding(b)
    if va is None or vb is None:
        return math.nan
    return float(np.dot(va, vb) / (np.linalg.norm(va) * np.linalg.norm(vb)))


def identify(
    embedding: Sequence[float],
    profiles: Iterable[VoiceProfile],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    speaker_id: Optional[int] = None,
    names: Optional[dict] = None,
) -> Optional[SpeakerMatch]:
    """Best profile whose similarity reaches the threshold, else None.

    Args:
        embedding: Query voice embedding.
        profiles: Profile library; profiles without a valid embedding are skipped.
        threshold: Minimum cosine similarity for a match.
        speaker_id: Per-job speaker the query belongs to, copied into the match.
        names: Optional profile id -> display name, for logging and the match.
    """
    query = as_embedding(embedding)
    if query is None:
        logger.warning("Cannot identify speaker: invalid query embedding")
        return None

    best_profile: Optional[VoiceProfile] = None
    best_similarity = -math.inf
    for profile in profiles:
        candidate = as_embedding(profile.embedding)
        if candidate is None:
            continue
        similarity = float(np.dot(query, candidate) / (np.linalg.norm(query) * np.linalg.norm(candidate)))
        if names:
            logger.debug(f"{names.get(profile.speaker_id, profile.speaker_id)}: similarity={similarity:.3f}")
        if similarity > best_similarity:
            best_similarity = similarity
            best_profile = profile

    if best_profile is None or best_similarity < threshold:
        logger.info(f"No profile match (best={best_similarity:.3f}, threshold={threshold})")
        return None

    confidence = min(1.0, max(0.0, best_similarity))
    name = names.get(best_profile.speaker_id) if names else None
    logger.info(f"Matched profile {name or best_profile.speaker_id} (confidence {confidence:.1%})")
    return SpeakerMatch(
        matched_profile_id=best_profile.speaker_id,
        confidence=confidence,
        speaker_id=speaker_id,
        speaker_name=name,
    )


def running_mean(current: Sequence[float], count: int, new: Sequence[float]) -> list[float]:
    """Component-wise mean after adding `new` to `count` prior contributions."""
    if count <= 0:
        return list(np.asarray(new, dtype=np.float64).tolist())
    cur = np.asarray(current, dtype=np.float64)
    nxt = np.asarray(new, dtype=np.float64)
    return ((cur * count + nxt) / (count + 1)).tolist()
