"""Structural checks for a built (or loaded) Timeline.

Never raises from validate(): every rule runs and all findings are
accumulated, so one call reports every problem at once. Checks, in order:
- identity fields present
- number of video segments matches the number of generated videos
  (needs the source Project, skipped by validate_structure)
- segments are time-contiguous (within CONTINUITY_EPSILON)
- video segments carry a source URL
- positive integer dimensions
- positive frame rate
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from scenereel.exceptions import ContinuityError
from scenereel.schemas.project import Project
from scenereel.schemas.timeline import CONTINUITY_EPSILON, Timeline
from scenereel.services.timeline_builder import PLACEHOLDER_ID_PREFIX, SEGMENT_ID_PREFIX

logger = logging.getLogger(__name__)

Rule = Callable[[Optional[Project], Timeline], list[str]]


@dataclass
class TimelineValidationResult:
    valid: bool
    issues: list[str] = field(default_factory=list)


class TimelineValidator:
    """Validates a timeline's structure without rendering it."""

    def validate(self, project: Project, timeline: Timeline) -> TimelineValidationResult:
        return self._run(self._rules(with_project=True), project, timeline)

    def validate_structure(self, timeline: Timeline) -> TimelineValidationResult:
        """Checks that need no source project, for timelines submitted as-is."""
        return self._run(self._rules(with_project=False), None, timeline)

    def require_valid(self, project: Project, timeline: Timeline) -> None:
        """Raise ContinuityError carrying every issue if the timeline is invalid."""
        self._raise_if_invalid(self.validate(project, timeline))

    def require_renderable(self, timeline: Timeline) -> None:
        """Raise ContinuityError if a submitted timeline fails the structural checks."""
        self._raise_if_invalid(self.validate_structure(timeline))

    def _rules(self, with_project: bool) -> list[tuple[str, Rule]]:
        rules: list[tuple[str, Rule]] = [("identity", self._check_identity)]
        if with_project:
            rules.append(("segment_count", self._check_segment_count))
        rules.extend([
            ("continuity", self._check_continuity),
            ("sources", self._check_sources),
            ("dimensions", self._check_dimensions),
            ("frame_rate", self._check_frame_rate),
        ])
        return rules

    @staticmethod
    def _run(
        rules: list[tuple[str, Rule]],
        project: Optional[Project],
        timeline: Timeline,
    ) -> TimelineValidationResult:
        issues: list[str] = []
        for rule_name, rule_fn in rules:
            try:
                issues.extend(rule_fn(project, timeline))
            except Exception as e:
                logger.warning(f"Timeline rule '{rule_name}' failed: {e}")
                issues.append(f"Rule check failed ({rule_name}): {e}")

        return TimelineValidationResult(valid=not issues, issues=issues)

    @staticmethod
    def _raise_if_invalid(result: TimelineValidationResult) -> None:
        if not result.valid:
            raise ContinuityError(result.issues)

    def _check_identity(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        if not timeline.id or not timeline.name:
            return ["Timeline missing basic properties (id, name)"]
        return []

    def _check_segment_count(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        # Counts video segments only. Placeholders stand in for image-only
        # scenes, which have no generated video, so counting them would flag
        # every project that mixes image-only scenes with video scenes.
        expected = sum(len(scene.generated_videos) for scene in project.scenes)
        actual = sum(
            1 for segment in timeline.segments
            if not segment.id.startswith(PLACEHOLDER_ID_PREFIX)
        )
        if actual != expected:
            return [f"Video count mismatch: project {expected}, timeline {actual}"]
        return []

    def _check_continuity(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        issues: list[str] = []
        expected_time = 0.0
        for segment in timeline.segments:
            if abs(segment.start_time - expected_time) > CONTINUITY_EPSILON:
                issues.append(
                    f"Time continuity issue at segment {segment.id}: "
                    f"expected {expected_time}, found {segment.start_time}"
                )
            # Continue from the actual segment so one gap is reported once
            expected_time = segment.start_time + segment.duration
        return issues

    def _check_sources(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        return [
            f"Missing video URL for segment {segment.id}"
            for segment in timeline.segments
            if not segment.video_src and segment.id.startswith(SEGMENT_ID_PREFIX)
        ]

    def _check_dimensions(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        width, height = timeline.width, timeline.height
        if not isinstance(width, int) or not isinstance(height, int) or width <= 0 or height <= 0:
            return ["Invalid timeline dimensions"]
        return []

    def _check_frame_rate(self, project: Optional[Project], timeline: Timeline) -> list[str]:
        if timeline.fps <= 0:
            return ["Invalid frame rate"]
        return []
