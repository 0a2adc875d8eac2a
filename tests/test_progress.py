"""
Tests for the progress aggregator state machine.
"""

import threading

import pytest

from domain.models import (
    AudioSource,
    ChunkPhase,
    ChunkProgress,
    LocalModelPhase,
    LocalModelProgress,
    TranscriptionPhase,
    TranscriptSource,
)
from domain.progress import (
    ProgressAggregator,
    ProgressEvent,
    ProgressEventKind,
    SourceState,
    phase_rank,
    should_update_info,
)
from ports.progress import ProgressPort

from conftest import info

MIC = TranscriptSource.MICROPHONE
SYSTEM = TranscriptSource.SYSTEM
P = TranscriptionPhase


class RecordingListener(ProgressPort):
    def __init__(self):
        self.reports = []

    def report(self, source, info, local=None):
        self.reports.append((source, info, local))


class TestPhaseRank:
    def test_total_order(self):
        order = [P.PREPARING, P.UPLOADING, P.PROCESSING, P.PARSING, P.COMPLETED, P.FAILED]
        assert [phase_rank(p) for p in order] == sorted(phase_rank(p) for p in order)


class TestShouldUpdateInfo:
    def test_lower_rank_rejected(self):
        assert not should_update_info(info(P.PROCESSING, 0.5), info(P.UPLOADING, 0.9))

    def test_higher_rank_accepted(self):
        assert should_update_info(info(P.UPLOADING, 0.9), info(P.PROCESSING, 0.0))

    def test_small_regression_is_noise(self):
        """A drop under epsilon is neither a regression nor a material change."""
        assert not should_update_info(info(P.UPLOADING, 0.500), info(P.UPLOADING, 0.495))

    def test_regression_beyond_epsilon_rejected(self):
        assert not should_update_info(info(P.UPLOADING, 0.5), info(P.UPLOADING, 0.3))

    def test_progress_increase_accepted(self):
        assert should_update_info(info(P.UPLOADING, 0.3), info(P.UPLOADING, 0.5))

    def test_chunk_phase_change_accepted(self):
        before = info(P.UPLOADING, 0.0, chunk_progresses=[ChunkProgress(0)], total_chunks=1)
        after = info(P.UPLOADING, 0.0, chunk_progresses=[ChunkProgress(0, ChunkPhase.UPLOADING)], total_chunks=1)
        assert should_update_info(before, after)

    def test_fewer_completed_chunks_rejected(self):
        assert not should_update_info(
            info(P.UPLOADING, 0.5, completed_chunks=2, total_chunks=4),
            info(P.UPLOADING, 0.5, completed_chunks=1, total_chunks=4),
        )


class TestProgressAggregator:
    """Test cases for ProgressAggregator."""

    def test_preparing_processing_then_stale_preparing(self):
        """preparing -> processing -> preparing leaves processing."""
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav", 100)

        assert agg.update(MIC, info(P.PROCESSING, 0.4, file_name="mic.wav", file_size=100))
        assert not agg.update(MIC, info(P.PREPARING, 0.0, file_name="mic.wav", file_size=100))

        snap = agg.snapshot()
        assert snap.overall.phase == P.PROCESSING
        assert snap.source(MIC).info.phase == P.PROCESSING

    def test_completed_source_ignores_later_updates(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.UPLOADING, 0.5))
        agg.complete_source(MIC, segments=3, speakers=2)

        assert not agg.update(MIC, info(P.PROCESSING, 0.9))

        entry = agg.snapshot().source(MIC)
        assert entry.state == SourceState.COMPLETED
        assert entry.info.phase == P.COMPLETED
        assert entry.result_segments == 3

    def test_late_update_does_not_touch_overall(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.complete_source(MIC, 1, 1)
        overall_before = agg.snapshot().overall

        agg.update(MIC, info(P.PARSING, 1.0))

        assert agg.snapshot().overall == overall_before

    def test_failed_is_sticky(self):
        agg = ProgressAggregator()
        agg.start_source(SYSTEM, "system.wav")
        agg.fail_source(SYSTEM, "Network down")
        agg.complete_source(SYSTEM, 10, 2)

        entry = agg.snapshot().source(SYSTEM)
        assert entry.state == SourceState.FAILED
        assert entry.error_message == "Network down"

    def test_start_source_resets_overall_for_next_file(self):
        """Starting the second source is an explicit restart of the overall status."""
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.PROCESSING, 1.0, file_name="mic.wav"))
        agg.complete_source(MIC, 1, 1)

        agg.start_source(SYSTEM, "system.wav", 2048)

        snap = agg.snapshot()
        assert snap.overall.phase == P.PREPARING
        assert snap.overall.file_name == "system.wav"
        assert snap.source(MIC).state == SourceState.COMPLETED
        assert snap.source(SYSTEM).state == SourceState.IN_PROGRESS

    def test_parallel_start_does_not_regress_overall(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.PROCESSING, 0.5, file_name="mic.wav"))

        agg.start_source(SYSTEM, "system.wav")

        snap = agg.snapshot()
        assert snap.overall.phase == P.PROCESSING
        assert snap.overall.file_name == "mic.wav"
        assert snap.source(SYSTEM).info.phase == P.PREPARING

    def test_overall_completes_when_every_source_is_terminal(self):
        agg = ProgressAggregator()
        agg.reset([AudioSource("/a/mic.wav", MIC), AudioSource("/a/system.wav", SYSTEM)])
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.PROCESSING, 1.0))
        agg.complete_source(MIC, 2, 1)

        assert agg.snapshot().overall.phase == P.PROCESSING

        agg.start_source(SYSTEM, "system.wav")
        agg.update(SYSTEM, info(P.PARSING, 1.0))
        agg.fail_source(SYSTEM, "quota exceeded")

        snap = agg.snapshot()
        assert snap.finished
        assert snap.overall.phase == P.COMPLETED
        assert snap.overall.upload_progress == 1.0

    def test_overall_fails_when_every_source_failed(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.start_source(SYSTEM, "system.wav")
        agg.fail_source(MIC, "boom")

        assert agg.snapshot().overall.phase == P.PREPARING

        agg.fail_source(SYSTEM, "boom")

        assert agg.snapshot().overall.phase == P.FAILED

    def test_sources_are_independent(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.fail_source(MIC, "boom")

        agg.start_source(SYSTEM, "system.wav")
        assert agg.update(SYSTEM, info(P.UPLOADING, 0.2))

        assert agg.snapshot().source(SYSTEM).info.phase == P.UPLOADING

    def test_no_material_change_is_noop(self):
        listener = RecordingListener()
        agg = ProgressAggregator(listener)
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.UPLOADING, 0.5))
        count = len(listener.reports)

        assert not agg.update(MIC, info(P.UPLOADING, 0.505))
        assert len(listener.reports) == count

    def test_local_progress_tracked(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        agg.update(MIC, info(P.PROCESSING, 0.5), LocalModelProgress(LocalModelPhase.PROCESSING, 0.5))
        agg.update(MIC, None, LocalModelProgress(LocalModelPhase.LOADING_MODEL, 0.0))

        assert agg.snapshot().source(MIC).local.phase == LocalModelPhase.PROCESSING

    def test_reset_registers_planned_sources(self):
        agg = ProgressAggregator()
        agg.reset([AudioSource("/a/mic.wav", MIC), AudioSource("/a/system.wav", SYSTEM)], {MIC: 10})

        snap = agg.snapshot()
        assert [s.source for s in snap.sources] == [MIC, SYSTEM]
        assert snap.source(MIC).file_size == 10
        assert snap.source(SYSTEM).state == SourceState.PENDING
        assert not snap.finished

    def test_apply_dispatches_events(self):
        agg = ProgressAggregator()
        agg(ProgressEvent(ProgressEventKind.STARTED, MIC, file_name="mic.wav", file_size=5))
        agg(ProgressEvent(ProgressEventKind.PROGRESS, MIC, info=info(P.UPLOADING, 0.3)))
        agg(ProgressEvent(ProgressEventKind.COMPLETED, MIC, segments=4, speakers=1))

        snap = agg.snapshot()
        assert snap.finished
        assert snap.source(MIC).result_speakers == 1

    def test_snapshot_is_a_copy(self):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        snap = agg.snapshot()
        snap.overall.phase = P.FAILED

        assert agg.snapshot().overall.phase == P.PREPARING

    def test_source_info_after_failure(self):
        agg = ProgressAggregator()
        agg.start_source(SYSTEM, "system.wav")
        agg.update(SYSTEM, info(P.UPLOADING, 0.4))
        agg.fail_source(SYSTEM, "Chunk 1/2 failed")

        current = agg.source_info(SYSTEM)
        assert current.phase == P.FAILED
        assert current.upload_progress == pytest.approx(0.4)
        assert agg.source_info(MIC) is None

    def test_listener_errors_do_not_propagate(self):
        class Broken(ProgressPort):
            def report(self, source, info, local=None):
                raise RuntimeError("listener down")

        agg = ProgressAggregator(Broken())
        agg.start_source(MIC, "mic.wav")
        assert agg.update(MIC, info(P.UPLOADING, 0.5))

    def test_concurrent_updates_never_regress(self):
        """Out-of-order chunk callbacks from many threads end at the highest phase."""
        agg = ProgressAggregator()
        agg.start_source(SYSTEM, "system.wav")
        phases = [P.UPLOADING, P.PROCESSING, P.PARSING]
        seen = []
        seen_lock = threading.Lock()

        def worker(n):
            for i in range(200):
                phase = phases[(n + i) % len(phases)]
                agg.update(SYSTEM, info(phase, (i % 100) / 100))
                snap = agg.snapshot()
                with seen_lock:
                    seen.append(phase_rank(snap.source(SYSTEM).info.phase))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert agg.snapshot().source(SYSTEM).info.phase == P.PARSING
        assert max(seen) == phase_rank(P.PARSING)

    @pytest.mark.parametrize("terminal", ["complete", "fail"])
    def test_terminal_then_any_phase_is_ignored(self, terminal):
        agg = ProgressAggregator()
        agg.start_source(MIC, "mic.wav")
        if terminal == "complete":
            agg.complete_source(MIC, 0, 0)
        else:
            agg.fail_source(MIC, "x")

        for phase in P:
            assert not agg.update(MIC, info(phase, 1.0))
