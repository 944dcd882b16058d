"""Render API endpoints.

Submit returns as soon as the job is recorded; rendering continues in the
background and is followed through the status endpoint or the WebSocket
feed.
"""

import logging

from fastapi import APIRouter, status

from scenereel.api.deps import RenderServiceDep
from scenereel.render.job_store import RenderJob
from scenereel.schemas.render import (
    ProjectRenderRequest,
    RenderCancelResponse,
    RenderRequest,
    RenderStatusResponse,
    RenderSubmitResponse,
    TimelineBuildRequest,
    TimelineBuildResponse,
)
from scenereel.services.timeline_builder import estimate_render_seconds

router = APIRouter()
logger = logging.getLogger(__name__)


def _submit_response(job: RenderJob) -> RenderSubmitResponse:
    return RenderSubmitResponse(
        render_id=job.id,
        status=job.status.value,
        estimated_seconds=job.options.get("estimated_seconds"),
    )


def _status_response(job: RenderJob) -> RenderStatusResponse:
    return RenderStatusResponse(
        render_id=job.id,
        status=job.status.value,
        progress=job.progress,
        current_stage=job.current_stage,
        output_url=job.output_url,
        error=job.error_message,
        rendered_by=job.rendered_by,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
    )


@router.post(
    "/renders",
    response_model=RenderSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_render(request: RenderRequest, service: RenderServiceDep) -> RenderSubmitResponse:
    """Queue a render of a timeline."""
    job = await service.submit(request)
    return _submit_response(job)


@router.get("/renders/{render_id}/status", response_model=RenderStatusResponse)
async def get_render_status(render_id: str, service: RenderServiceDep) -> RenderStatusResponse:
    return _status_response(service.get(render_id))


@router.post("/renders/{render_id}/cancel", response_model=RenderCancelResponse)
async def cancel_render(render_id: str, service: RenderServiceDep) -> RenderCancelResponse:
    """Cancel a pending or rendering job. Finished jobs answer 409."""
    job = await service.cancel(render_id)
    return RenderCancelResponse(
        render_id=job.id,
        status=job.status.value,
        error=job.error_message,
    )


@router.get("/projects/{project_id}/renders", response_model=list[RenderStatusResponse])
async def list_project_renders(project_id: str, service: RenderServiceDep) -> list[RenderStatusResponse]:
    return [_status_response(job) for job in service.list_for_project(project_id)]


@router.post(
    "/projects/render",
    response_model=RenderSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def render_project(body: ProjectRenderRequest, service: RenderServiceDep) -> RenderSubmitResponse:
    """Build a project's timeline, validate it and queue the render.

    A timeline that fails validation is rejected with 422 and no job is created.
    """
    job = await service.render_project(body.project, body.settings, body.render)
    return _submit_response(job)


@router.post("/timelines", response_model=TimelineBuildResponse)
async def build_timeline(body: TimelineBuildRequest, service: RenderServiceDep) -> TimelineBuildResponse:
    """Convert a project into a timeline without rendering it."""
    timeline, result = service.build_timeline(body.project, body.settings)
    if not result.valid:
        logger.info(f"Timeline for project {body.project.id} has {len(result.issues)} issue(s)")
    return TimelineBuildResponse(
        timeline=timeline,
        valid=result.valid,
        issues=result.issues,
        estimated_seconds=estimate_render_seconds(timeline),
    )
