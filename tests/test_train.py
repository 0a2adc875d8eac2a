"""
Tests for voice profile training.
"""

import threading
import uuid

import numpy as np
import pytest

from adapters.local.memory import InMemoryVoiceProfileStore
from domain.errors import MatchingError
from domain.models import (
    QualityTier,
    SegmentTimeRange,
    SessionAudio,
    SpeakerMatch,
    TranscriptSource,
    VoiceProfile,
)
from domain.matching import l2_normalize
from use_cases.train import VoiceProfileTrainer, audio_path_for_speaker, segment_time_ranges

from conftest import FakeDiarization, diarization_result, make_embedding, seg, spk


@pytest.fixture
def trainer(profile_store, library):
    return VoiceProfileTrainer(profile_store, library)


class TestTrain:
    """Test cases for VoiceProfileTrainer.train."""

    def test_first_training_creates_profile(self, trainer, profile_store, alice, session_id):
        ranges = [SegmentTimeRange(0.0, 4.0)]

        assert trainer.train(alice.id, make_embedding(1), 4.0, ranges, session_id, "Standup")

        profile = profile_store.get_profile(alice.id)
        assert profile.sample_count == 1
        assert profile.total_duration == 4.0
        assert profile.embedding == pytest.approx(l2_normalize(make_embedding(1)))

        records = profile_store.training_records(alice.id)
        assert len(records) == 1
        assert records[0].session_id == session_id
        assert records[0].segment_ranges == (SegmentTimeRange(0.0, 4.0),)
        assert records[0].session_title == "Standup"

    def test_embedding_is_mean_of_normalised_contributions(self, trainer, profile_store, alice):
        contributions = [make_embedding(i) for i in range(3)]
        for e in contributions:
            trainer.train(alice.id, e, 1.0)

        expected = np.mean([l2_normalize(e) for e in contributions], axis=0)
        assert profile_store.get_profile(alice.id).embedding == pytest.approx(expected.tolist())

    def test_statistics_aggregate_records(self, trainer, profile_store, alice):
        for duration in (3.0, 5.5, 0.0, 12.0):
            trainer.train(alice.id, make_embedding(int(duration)), duration)

        profile = profile_store.get_profile(alice.id)
        records = profile_store.training_records(alice.id)
        assert profile.sample_count == len(records) == 4
        assert profile.total_duration == pytest.approx(sum(r.extracted_duration for r in records))

    def test_failed_record_write_rolls_back_profile(self, library, alice):
        class RecordWriteFails(InMemoryVoiceProfileStore):
            fail = False

            def append_training_record(self, record):
                if self.fail:
                    raise OSError("disk full")
                super().append_training_record(record)

        store = RecordWriteFails()
        trainer = VoiceProfileTrainer(store, library)
        trainer.train(alice.id, make_embedding(1), 3.0)
        before = store.get_profile(alice.id)

        store.fail = True
        with pytest.raises(OSError):
            trainer.train(alice.id, make_embedding(2), 5.0)

        profile = store.get_profile(alice.id)
        assert profile.sample_count == len(store.training_records(alice.id)) == 1
        assert profile.total_duration == 3.0
        assert profile.embedding == pytest.approx(before.embedding)

    def test_failed_first_record_write_leaves_no_profile(self, library, alice):
        class RecordWriteFails(InMemoryVoiceProfileStore):
            def append_training_record(self, record):
                raise OSError("disk full")

        store = RecordWriteFails()

        with pytest.raises(OSError):
            VoiceProfileTrainer(store, library).train(alice.id, make_embedding(1), 3.0)
        assert store.get_profile(alice.id) is None

    @pytest.mark.parametrize("embedding", [None, [0.1] * 128, [0.0] * 256])
    def test_invalid_embedding_writes_nothing(self, trainer, profile_store, alice, embedding):
        assert not trainer.train(alice.id, embedding, 5.0)

        assert profile_store.get_profile(alice.id) is None
        assert profile_store.training_records(alice.id) == []

    def test_unusable_stored_embedding_is_replaced(self, trainer, profile_store, alice):
        profile_store.save_profile(VoiceProfile(speaker_id=alice.id, embedding=[0.1] * 10, sample_count=2))

        assert trainer.train(alice.id, make_embedding(3), 1.0)

        profile = profile_store.get_profile(alice.id)
        assert profile.has_embedding
        assert profile.sample_count == 3

    def test_quality_grows_with_samples(self, trainer, alice):
        assert trainer.quality(alice.id) is None
        for i in range(8):
            trainer.train(alice.id, make_embedding(i), 3.0)
        assert trainer.quality(alice.id) == QualityTier.HIGH

    def test_concurrent_training_loses_no_updates(self, trainer, profile_store, alice):
        threads = [threading.Thread(target=trainer.train, args=(alice.id, make_embedding(i), 1.0)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert trainer.profile_stats(alice.id) == (20, pytest.approx(20.0))
        assert len(profile_store.training_records(alice.id)) == 20

    def test_reset_deletes_profile_and_records(self, trainer, profile_store, alice, bob):
        trainer.train(alice.id, make_embedding(1), 2.0)
        trainer.train(bob.id, make_embedding(2), 2.0)

        trainer.reset(alice.id)

        assert profile_store.get_profile(alice.id) is None
        assert profile_store.training_records(alice.id) == []
        assert profile_store.get_profile(bob.id) is not None

    def test_training_session_count(self, trainer, alice):
        first, second = uuid.uuid4(), uuid.uuid4()
        trainer.train(alice.id, make_embedding(1), 1.0, session_id=first)
        trainer.train(alice.id, make_embedding(2), 1.0, session_id=first)
        trainer.train(alice.id, make_embedding(3), 1.0, session_id=second)

        assert trainer.training_session_count(alice.id) == 2


class TestTrainFromEmbedding:
    def test_duration_is_zero(self, trainer, profile_store, alice):
        assert trainer.train_from_embedding(alice.id, make_embedding(1))

        profile = profile_store.get_profile(alice.id)
        assert profile.sample_count == 1
        assert profile.total_duration == 0.0
        assert profile_store.training_records(alice.id)[0].segment_ranges == ()


class TestSegmentTimeRanges:
    def test_uses_end_when_known(self):
        assert segment_time_ranges([seg(2.0, end=5.0)]) == [SegmentTimeRange(2.0, 5.0)]

    def test_estimates_from_words(self):
        ranges = segment_time_ranges([seg(1.0, "one two three four")])
        assert ranges[0].duration == pytest.approx(1.2)

    def test_caps_at_ten_seconds(self):
        ranges = segment_time_ranges([seg(0.0, end=30.0), seg(40.0, "word " * 50)])
        assert [r.duration for r in ranges] == [10.0, 10.0]

    def test_skips_empty_segments(self):
        assert segment_time_ranges([seg(0.0, "  ")]) == []


class TestTrainFromSession:
    def test_uses_speaker_embedding(self, trainer, profile_store, alice, session_id):
        speaker = spk(0, embedding=make_embedding(7))
        segments = [seg(0.0, speaker_id=0, end=3.0), seg(5.0, speaker_id=0, end=6.0), seg(7.0, speaker_id=1, end=9.0)]

        assert trainer.train_from_session(alice.id, speaker, segments, None, session_id)

        profile = profile_store.get_profile(alice.id)
        assert profile.total_duration == pytest.approx(4.0)
        assert profile.embedding == pytest.approx(l2_normalize(make_embedding(7)))
        assert len(profile_store.training_records(alice.id)[0].segment_ranges) == 2

    def test_extracts_best_overlap_speaker(self, profile_store, library, alice, session_id):
        result = diarization_result(
            [("S0", 0.0, 4.0), ("S1", 4.0, 10.0)],
            {"S0": make_embedding(20), "S1": make_embedding(21)},
        )
        trainer = VoiceProfileTrainer(profile_store, library, FakeDiarization(result))
        segments = [seg(4.5, speaker_id=2, end=9.5)]

        assert trainer.train_from_session(alice.id, spk(2), segments, "/audio/mic.wav", session_id)

        assert profile_store.get_profile(alice.id).embedding == pytest.approx(l2_normalize(make_embedding(21)))

    def test_insufficient_overlap_does_not_train(self, profile_store, library, alice, session_id):
        result = diarization_result([("S0", 0.0, 0.5)], {"S0": make_embedding(20)})
        trainer = VoiceProfileTrainer(profile_store, library, FakeDiarization(result))

        assert not trainer.train_from_session(alice.id, spk(0), [seg(0.0, speaker_id=0, end=3.0)], "/a.wav", session_id)
        assert profile_store.get_profile(alice.id) is None

    def test_diarization_failure_does_not_train(self, profile_store, library, alice, session_id):
        trainer = VoiceProfileTrainer(profile_store, library, FakeDiarization(error=MatchingError("no model")))

        assert not trainer.train_from_session(alice.id, spk(0), [seg(0.0, speaker_id=0, end=3.0)], "/a.wav", session_id)

    def test_no_segments_does_not_train(self, trainer, alice, session_id):
        assert not trainer.train_from_session(alice.id, spk(0, embedding=make_embedding(1)), [], None, session_id)


class TestTrainMatchedSpeakers:
    def test_prefers_audio_then_falls_back_to_embedding(self, profile_store, library, alice, bob, session_id):
        result = diarization_result([("S0", 0.0, 10.0)], {"S0": make_embedding(30)})
        trainer = VoiceProfileTrainer(profile_store, library, FakeDiarization(result))
        session = SessionAudio(session_id, mic_path="/a/mic.wav", title="Sync")
        segments = [
            seg(0.0, speaker_id=0, end=5.0, source=TranscriptSource.MICROPHONE),
            seg(1.0, speaker_id=1001, end=2.0, source=TranscriptSource.SYSTEM),
        ]
        speakers = [spk(0), spk(1001, embedding=make_embedding(31))]
        matches = {
            0: SpeakerMatch(alice.id, 0.8, speaker_id=0),
            1001: SpeakerMatch(bob.id, 0.7, speaker_id=1001),
        }

        trained = trainer.train_matched_speakers(matches, speakers, segments, session)

        assert trained == 2
        assert profile_store.get_profile(alice.id).total_duration == pytest.approx(5.0)
        # system audio is absent, so Bob is trained from the microphone file via his own embedding
        assert profile_store.get_profile(bob.id).embedding == pytest.approx(l2_normalize(make_embedding(31)))

    def test_embedding_fallback_without_audio(self, trainer, profile_store, bob, session_id):
        session = SessionAudio(session_id)
        speakers = [spk(3, embedding=make_embedding(5))]
        matches = {3: SpeakerMatch(bob.id, 0.9, speaker_id=3)}

        assert trainer.train_matched_speakers(matches, speakers, [seg(0.0, speaker_id=3)], session) == 1
        assert profile_store.get_profile(bob.id).total_duration == 0.0

    def test_unknown_library_speaker_is_skipped(self, trainer, session_id):
        matches = {0: SpeakerMatch(uuid.uuid4(), 0.9, speaker_id=0)}
        assert trainer.train_matched_speakers(matches, [spk(0, embedding=make_embedding(1))], [], SessionAudio(session_id)) == 0


class TestTrainFromDiarization:
    def test_trains_mapped_labels_by_name(self, profile_store, library, alice):
        result = diarization_result([("S0", 0.0, 6.0), ("S1", 6.0, 8.0)], {"S0": make_embedding(1), "S1": make_embedding(2)})
        trainer = VoiceProfileTrainer(profile_store, library)

        assert trainer.train_from_diarization(result, {"S0": "alice", "S1": "Nobody"}) == 1
        assert profile_store.get_profile(alice.id).total_duration == pytest.approx(6.0)


class TestAudioPathForSpeaker:
    def test_system_majority_uses_system_audio(self, session_id):
        session = SessionAudio(session_id, mic_path="/a/mic.wav", system_path="/a/sys.wav")
        segments = [seg(0.0, speaker_id=1000, source=TranscriptSource.SYSTEM)] * 2

        assert audio_path_for_speaker(1000, segments, session) == "/a/sys.wav"

    def test_tie_prefers_microphone(self, session_id):
        session = SessionAudio(session_id, mic_path="/a/mic.wav", system_path="/a/sys.wav")
        segments = [
            seg(0.0, speaker_id=0, source=TranscriptSource.SYSTEM),
            seg(1.0, speaker_id=0, source=TranscriptSource.MICROPHONE),
        ]

        assert audio_path_for_speaker(0, segments, session) == "/a/mic.wav"

    def test_single_file_session(self, session_id):
        session = SessionAudio(session_id, primary_path="/a/rec.wav")
        assert audio_path_for_speaker(0, [], session) == "/a/rec.wav"
