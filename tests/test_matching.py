"""
Tests for embedding validity, cosine similarity and profile matching.
"""

import math
import uuid

import numpy as np
import pytest

from domain.matching import as_embedding, cosine_similarity, identify, is_valid_embedding, l2_normalize, running_mean
from domain.models import SpeakerMatch, VoiceProfile

from conftest import blend, make_embedding


def profile(embedding, speaker_id=None):
    return VoiceProfile(speaker_id=speaker_id or uuid.uuid4(), embedding=embedding)


class TestEmbeddingValidity:
    def test_256_dims_is_valid(self):
        assert is_valid_embedding(make_embedding(0))

    @pytest.mark.parametrize("length", [0, 128, 255, 257, 512])
    def test_other_lengths_are_absent(self, length):
        assert as_embedding([0.1] * length) is None

    def test_zero_vector_is_absent(self):
        assert as_embedding([0.0] * 256) is None

    def test_nan_is_absent(self):
        vec = make_embedding(0)
        vec[10] = math.nan
        assert as_embedding(vec) is None

    def test_none_is_absent(self):
        assert as_embedding(None) is None


class TestCosineSimilarity:
    def test_identical_vectors(self):
        e = make_embedding(3)
        assert cosine_similarity(e, e) == pytest.approx(1.0)

    def test_scale_invariant(self):
        e = make_embedding(3)
        assert cosine_similarity(e, [x * 7.5 for x in e]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        e = make_embedding(3)
        assert cosine_similarity(e, [-x for x in e]) == pytest.approx(-1.0)

    def test_invalid_input_is_nan(self):
        assert math.isnan(cosine_similarity([1.0, 2.0], make_embedding(1)))


class TestIdentify:
    def test_identity_match_has_full_confidence(self):
        e = make_embedding(5)
        p = profile(e)

        match = identify(e, [p])

        assert isinstance(match, SpeakerMatch)
        assert match.matched_profile_id == p.speaker_id
        assert match.confidence == pytest.approx(1.0)
        assert not match.is_low_confidence

    def test_below_threshold_returns_none(self):
        """Similarity 0.40 does not reach the default 0.45 threshold."""
        a = np.zeros(256)
        a[0] = 1.0
        b = np.zeros(256)
        b[0] = 0.40
        b[1] = math.sqrt(1 - 0.40 ** 2)

        assert cosine_similarity(a, b) == pytest.approx(0.40)
        assert identify(a.tolist(), [profile(b.tolist())]) is None

    def test_at_threshold_matches_with_low_confidence(self):
        a = np.zeros(256)
        a[0] = 1.0
        b = np.zeros(256)
        b[0] = 0.46
        b[1] = math.sqrt(1 - 0.46 ** 2)

        match = identify(a.tolist(), [profile(b.tolist())], threshold=0.45)

        assert match is not None
        assert match.confidence == pytest.approx(0.46)
        assert match.is_low_confidence

    def test_best_profile_wins(self):
        target = make_embedding(10)
        close = profile(blend(target, make_embedding(11), 0.1))
        far = profile(blend(target, make_embedding(12), 0.6))

        match = identify(target, [far, close])

        assert match.matched_profile_id == close.speaker_id

    def test_profiles_without_valid_embedding_are_skipped(self):
        e = make_embedding(5)
        broken = profile([1.0] * 128)
        good = profile(e)

        match = identify(e, [broken, good])

        assert match.matched_profile_id == good.speaker_id

    def test_invalid_query_returns_none(self):
        assert identify([0.5] * 10, [profile(make_embedding(1))]) is None

    def test_empty_library_returns_none(self):
        assert identify(make_embedding(1), []) is None

    def test_confidence_is_clamped(self):
        e = make_embedding(4)
        match = identify(e, [profile(e)], threshold=-1.0)
        assert 0.0 <= match.confidence <= 1.0

    def test_speaker_id_and_name_are_carried(self):
        e = make_embedding(4)
        p = profile(e)

        match = identify(e, [p], speaker_id=1002, names={p.speaker_id: "Alice"})

        assert match.speaker_id == 1002
        assert match.speaker_name == "Alice"


class TestRunningMean:
    def test_first_contribution_is_itself(self):
        assert running_mean([], 0, [1.0, 2.0]) == [1.0, 2.0]

    def test_mean_of_three(self):
        mean = running_mean([2.0, 4.0], 2, [5.0, 7.0])
        assert mean == pytest.approx([3.0, 5.0])

    def test_l2_normalize(self):
        assert l2_normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])
