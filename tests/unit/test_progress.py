"""Unit tests for stage estimates and progress display"""

import pytest

from meeting_transcriber.models import PipelineStage
from meeting_transcriber.progress import (
    EstimateConstants, StageProgress, estimate_stage_seconds, estimate_transcription_cost, progress_percent
)

from test_utils import MB


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestEstimates:

    @pytest.mark.unit
    @pytest.mark.parametrize("stage,expected", [
        (PipelineStage.UPLOADING, 23),
        (PipelineStage.PROCESSING, 12),
        (PipelineStage.CHUNKING, 9),
        (PipelineStage.TRANSCRIBING, 600),
        (PipelineStage.SUMMARIZING, 120),
        (PipelineStage.COMPLETED, 0),
        (PipelineStage.ERROR, 0),
    ])
    def test_large_upload(self, stage, expected):
        assert estimate_stage_seconds(120 * MB, stage) == expected

    @pytest.mark.unit
    def test_small_upload(self):
        assert estimate_stage_seconds(3 * MB, PipelineStage.CHUNKING) == 0
        assert estimate_stage_seconds(3 * MB, PipelineStage.TRANSCRIBING) == 72
        assert estimate_stage_seconds(3 * MB, 'summarizing') == 20

    @pytest.mark.unit
    def test_estimates_never_negative(self):
        for stage in PipelineStage:
            assert estimate_stage_seconds(0, stage) >= 0

    @pytest.mark.unit
    def test_constants_from_config(self):
        constants = EstimateConstants.from_config({'estimates': {
            'transcribing_cap': 900,
            'realtime_seconds': {'gpt-4o-transcribe': 20},
            'bogus': 1,
        }})
        assert constants.transcribing_cap == 900.0
        assert constants.realtime_seconds == {'whisper-1': 30.0, 'gpt-4o-transcribe': 20.0}
        assert estimate_stage_seconds(120 * MB, PipelineStage.TRANSCRIBING, constants=constants) == 900

    @pytest.mark.unit
    def test_transcription_cost(self):
        assert estimate_transcription_cost(600) == pytest.approx(0.06)
        assert estimate_transcription_cost(-5) == 0.0


class TestProgressPercent:

    @pytest.mark.unit
    @pytest.mark.parametrize("elapsed,estimate,expected", [
        (0, 100, 0),
        (50, 100, 50),
        (100, 100, 99),
        (500, 100, 99),
        (-1, 100, 0),
        (10, 0, 99),
    ])
    def test_bounds(self, elapsed, estimate, expected):
        assert progress_percent(elapsed, estimate) == expected


class TestStageProgress:

    @pytest.mark.unit
    def test_never_moves_back(self):
        clock = FakeClock()
        progress = StageProgress(PipelineStage.TRANSCRIBING, 100, clock=clock)
        clock.now = 60
        assert progress.update() == 60

        progress.reestimate(300)
        clock.now = 70
        assert progress.update() == 60
        assert progress.remaining_seconds() == 230

    @pytest.mark.unit
    def test_floor_leads_the_clock(self):
        clock = FakeClock()
        progress = StageProgress(PipelineStage.TRANSCRIBING, 600, clock=clock)
        clock.now = 6
        assert progress.update(floor=50) == 50
        assert progress.update(floor=100) == 99

    @pytest.mark.unit
    def test_remaining_never_negative(self):
        clock = FakeClock()
        progress = StageProgress(PipelineStage.PROCESSING, 10, clock=clock)
        clock.now = 50
        assert progress.remaining_seconds() == 0
        assert progress.update() == 99

    @pytest.mark.unit
    def test_complete(self):
        progress = StageProgress(PipelineStage.PROCESSING, 10, clock=FakeClock())
        progress.complete()
        assert progress.update() == 100
        assert progress.remaining_seconds() == 0
