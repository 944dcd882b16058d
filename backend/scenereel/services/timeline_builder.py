"""Convert a Project into a flat, time-ordered render Timeline.

This is a deterministic conversion with no I/O:
- every GeneratedVideo becomes one Segment, laid end to end in scene order
- a scene with images but no video gets a single 5s placeholder Segment
- a crossfade Transition is placed between every adjacent pair of Segments
- effect hints are inferred from each video's style/motion settings
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional

from scenereel.config import Settings, get_settings
from scenereel.schemas.project import (
    GeneratedVideo,
    Project,
    Scene,
    VideoMetadata,
    VideoSettings,
)
from scenereel.schemas.timeline import (
    TIMELINE_SCHEMA_VERSION,
    Position,
    Segment,
    Timeline,
    TimelineMetadata,
    TimelineSettings,
    Transition,
    VideoEffect,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_DURATION = 5.0
PLACEHOLDER_OPACITY = 0.5
TRANSITION_DURATION = 0.5

# A gap wider than this between segments starts a new scene in to_project()
SCENE_BREAK_GAP = 2.0

# Render-time estimate multipliers
COMPLEXITY_MULTIPLIER = 1.5
QUALITY_MULTIPLIER = 1.2

SEGMENT_ID_PREFIX = "segment-"
PLACEHOLDER_ID_PREFIX = "placeholder-"


class TimelineBuilder:
    """Builds render timelines from projects."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def default_settings(self) -> TimelineSettings:
        return TimelineSettings(
            fps=self.settings.render_fps,
            width=self.settings.render_output_width,
            height=self.settings.render_output_height,
            background_color=self.settings.render_background_color,
            quality=self.settings.render_quality,
        )

    def merge_settings(self, override: Optional[TimelineSettings] = None) -> TimelineSettings:
        """Overlay the caller's non-empty fields on the defaults."""
        merged = self.default_settings()
        if override is None:
            return merged
        return merged.model_copy(update=override.model_dump(exclude_none=True))

    def build(
        self,
        project: Project,
        settings_override: Optional[TimelineSettings] = None,
    ) -> Timeline:
        """Convert a project into a Timeline.

        Args:
            project: Project with ordered scenes
            settings_override: Optional output settings merged over the defaults

        Returns:
            A new Timeline; the project is not modified
        """
        settings = self.merge_settings(settings_override)
        segments: list[Segment] = []
        current_time = 0.0

        for scene_index, scene in enumerate(project.scenes):
            for video_index, video in enumerate(scene.generated_videos):
                segment = self._video_segment(video, current_time, scene_index, video_index, settings)
                segments.append(segment)
                current_time += segment.duration

            if not scene.generated_videos and scene.images:
                segment = self._placeholder_segment(scene, current_time, scene_index, settings)
                segments.append(segment)
                current_time += segment.duration

        transitions = self.build_transitions(segments)

        logger.debug(
            f"Built timeline for project {project.id}: "
            f"{len(segments)} segments, {len(transitions)} transitions, {current_time:.2f}s"
        )

        return Timeline(
            id=f"timeline-{project.id}",
            name=f"{project.name} - Timeline",
            duration=current_time,
            fps=settings.fps,
            width=settings.width,
            height=settings.height,
            background_color=settings.background_color,
            segments=segments,
            transitions=transitions,
            metadata=TimelineMetadata(
                created_at=project.created_at,
                updated_at=self._clock(),
                version=TIMELINE_SCHEMA_VERSION,
                description=f"Built from project: {project.description or ''}",
                tags=["generated"],
                original_project_id=project.id,
            ),
        )

    def _video_segment(
        self,
        video: GeneratedVideo,
        start_time: float,
        scene_index: int,
        video_index: int,
        settings: TimelineSettings,
    ) -> Segment:
        duration = video.metadata.duration
        return Segment(
            id=f"{SEGMENT_ID_PREFIX}scene{scene_index}-video{video_index}-{video.id}",
            video_src=video.url,
            thumbnail_src=video.thumbnail_url,
            start_time=start_time,
            duration=duration,
            trim_start=0.0,
            trim_end=duration,
            position=Position(x=0, y=0, width=settings.width, height=settings.height),
            opacity=1.0,
            effects=infer_effects(video),
        )

    def _placeholder_segment(
        self,
        scene: Scene,
        start_time: float,
        scene_index: int,
        settings: TimelineSettings,
    ) -> Segment:
        return Segment(
            id=f"{PLACEHOLDER_ID_PREFIX}scene{scene_index}-{scene.id}",
            video_src="",
            start_time=start_time,
            duration=PLACEHOLDER_DURATION,
            trim_start=0.0,
            trim_end=PLACEHOLDER_DURATION,
            position=Position(x=0, y=0, width=settings.width, height=settings.height),
            opacity=PLACEHOLDER_OPACITY,
        )

    @staticmethod
    def build_transitions(segments: list[Segment]) -> list[Transition]:
        """One crossfade between each adjacent pair, centred on the cut."""
        transitions: list[Transition] = []
        for current, following in zip(segments, segments[1:]):
            transitions.append(
                Transition(
                    id=f"transition-{current.id}-{following.id}",
                    type="crossfade",
                    duration=TRANSITION_DURATION,
                    position=current.start_time + current.duration - TRANSITION_DURATION,
                    direction="left",
                    intensity=0.7,
                    properties={"smooth": True, "easing": "ease-in-out"},
                )
            )
        return transitions

    def build_many(
        self,
        projects: list[Project],
        on_progress: Optional[Callable[[int, int, Project], None]] = None,
    ) -> tuple[list[Timeline], list[str]]:
        """Convert several projects, collecting failures instead of raising."""
        timelines: list[Timeline] = []
        errors: list[str] = []

        for index, project in enumerate(projects):
            try:
                timelines.append(self.build(project))
            except Exception as e:
                message = f"Failed to build timeline for project {project.name}: {e}"
                logger.error(message)
                errors.append(message)
                continue

            if on_progress:
                on_progress(index + 1, len(projects), project)

        return timelines, errors

    def to_project(self, timeline: Timeline, original: Optional[Project] = None) -> Project:
        """Rebuild an approximate Project from a Timeline.

        Segments are grouped into scenes; a new scene starts when a segment
        begins more than SCENE_BREAK_GAP seconds after the end of the first
        segment of the current group. Placeholders carry no video.
        """
        project_id = original.id if original else timeline.id.removeprefix("timeline-")
        project_name = original.name if original else timeline.name.removesuffix(" - Timeline")

        groups: list[list[Segment]] = []
        for segment in timeline.segments:
            if groups and segment.start_time - groups[-1][0].end_time <= SCENE_BREAK_GAP:
                groups[-1].append(segment)
            else:
                groups.append([segment])

        scenes = []
        for index, group in enumerate(groups):
            videos = [
                GeneratedVideo(
                    id=segment.id.rsplit("-", 1)[-1] or f"video-{index}-{video_index}",
                    url=segment.video_src,
                    thumbnail_url=segment.thumbnail_src,
                    settings=VideoSettings(),
                    metadata=VideoMetadata(duration=segment.duration, fps=timeline.fps, format="mp4"),
                )
                for video_index, segment in enumerate(s for s in group if not s.is_placeholder)
            ]
            scenes.append(Scene(id=f"scene-{index}", scene_number=index + 1, generated_videos=videos))

        return Project(
            id=project_id,
            name=project_name,
            description=timeline.metadata.description,
            created_at=timeline.metadata.created_at,
            scenes=scenes,
        )


def infer_effects(video: GeneratedVideo) -> list[VideoEffect]:
    """Infer effect hints from a generated video's settings."""
    effects: list[VideoEffect] = []

    if video.settings.style == "cinematic":
        effects.append(VideoEffect(
            id=f"effect-cinematic-{video.id}",
            type="contrast",
            intensity=0.2,
            properties={"style": "cinematic"},
        ))
        effects.append(VideoEffect(
            id=f"effect-cinematic-sat-{video.id}",
            type="saturation",
            intensity=0.1,
            properties={"style": "cinematic"},
        ))

    if video.settings.motion_intensity == "high":
        effects.append(VideoEffect(
            id=f"effect-motion-{video.id}",
            type="blur",
            intensity=0.3,
            properties={"motionCompensation": True},
        ))

    return effects


def estimate_render_seconds(timeline: Timeline) -> int:
    """Rough wall-clock estimate for rendering a timeline."""
    if timeline.fps <= 0:
        return 0
    base = timeline.duration / timeline.fps
    return math.ceil(base * COMPLEXITY_MULTIPLIER * QUALITY_MULTIPLIER)
