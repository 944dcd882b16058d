"""Tests for timeline structural validation."""

import pytest

from scenereel.exceptions import ContinuityError
from scenereel.services.timeline_builder import TimelineBuilder
from scenereel.services.timeline_validator import TimelineValidator


@pytest.fixture
def validator() -> TimelineValidator:
    return TimelineValidator()


@pytest.fixture
def timeline(settings, sample_project):
    return TimelineBuilder(settings).build(sample_project)


class TestValidate:
    """Tests for TimelineValidator.validate."""

    def test_built_timeline_is_valid(self, validator, sample_project, timeline):
        """Placeholder segments are not counted against the project's videos."""
        result = validator.validate(sample_project, timeline)

        assert result.valid is True
        assert result.issues == []

    def test_missing_identity(self, validator, sample_project, timeline):
        timeline.name = ""
        result = validator.validate(sample_project, timeline)

        assert not result.valid
        assert result.issues == ["Timeline missing basic properties (id, name)"]

    def test_video_count_mismatch(self, validator, sample_project, timeline):
        timeline.segments = timeline.segments[:-1]
        timeline.duration = 14
        result = validator.validate(sample_project, timeline)

        assert "Video count mismatch: project 3, timeline 2" in result.issues

    def test_continuity_gap_reported_once(self, validator, sample_project, timeline):
        """Expected time advances from the actual segment, so one gap is one issue."""
        timeline.segments[2].start_time = 10.5
        timeline.segments[3].start_time = 14.5

        result = validator.validate(sample_project, timeline)

        continuity = [i for i in result.issues if i.startswith("Time continuity issue")]
        assert continuity == [
            "Time continuity issue at segment segment-scene2-video0-vc1: expected 10.0, found 10.5"
        ]

    def test_drift_within_tolerance_is_accepted(self, validator, sample_project, timeline):
        timeline.segments[2].start_time = 10.05
        timeline.segments[3].start_time = 14.05

        assert validator.validate(sample_project, timeline).valid

    def test_missing_source_on_video_segment(self, validator, sample_project, timeline):
        timeline.segments[0].video_src = ""
        result = validator.validate(sample_project, timeline)

        assert result.issues == ["Missing video URL for segment segment-scene0-video0-va"]

    def test_invalid_dimensions_and_frame_rate(self, validator, sample_project, timeline):
        timeline.width = 0
        timeline.fps = 0

        result = validator.validate(sample_project, timeline)

        assert result.issues == ["Invalid timeline dimensions", "Invalid frame rate"]

    def test_accumulates_all_issues_in_order(self, validator, sample_project, timeline):
        timeline.id = ""
        timeline.segments[0].video_src = ""
        timeline.height = -1

        result = validator.validate(sample_project, timeline)

        assert result.issues == [
            "Timeline missing basic properties (id, name)",
            "Missing video URL for segment segment-scene0-video0-va",
            "Invalid timeline dimensions",
        ]

    def test_never_raises_on_broken_rule(self, validator, sample_project, timeline, monkeypatch):
        def broken(project, timeline):
            raise RuntimeError("bad data")

        monkeypatch.setattr(validator, "_check_sources", broken)
        result = validator.validate(sample_project, timeline)

        assert result.issues == ["Rule check failed (sources): bad data"]


class TestRequireValid:
    def test_passes_for_valid_timeline(self, validator, sample_project, timeline):
        validator.require_valid(sample_project, timeline)

    def test_raises_with_issues(self, validator, sample_project, timeline):
        timeline.fps = 0

        with pytest.raises(ContinuityError) as exc_info:
            validator.require_valid(sample_project, timeline)

        assert exc_info.value.issues == ["Invalid frame rate"]
        assert exc_info.value.status_code == 422
        assert exc_info.value.to_error_info().issues == ["Invalid frame rate"]


class TestValidateStructure:
    """Tests for checks run on timelines submitted without a project."""

    def test_skips_video_count(self, validator, timeline):
        timeline.segments = timeline.segments[:2]

        assert validator.validate_structure(timeline).valid

    def test_reports_structural_issues(self, validator, timeline):
        timeline.segments[3].start_time = 15
        timeline.fps = 0

        result = validator.validate_structure(timeline)

        assert result.issues == [
            "Time continuity issue at segment segment-scene2-video1-vc2: expected 14.0, found 15.0",
            "Invalid frame rate",
        ]

    def test_require_renderable_raises(self, validator, timeline):
        timeline.width = 0

        with pytest.raises(ContinuityError) as exc_info:
            validator.require_renderable(timeline)

        assert exc_info.value.issues == ["Invalid timeline dimensions"]
