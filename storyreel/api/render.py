"""Render API endpoints - background rendering inside the API process."""

import logging

from fastapi import APIRouter, status

from storyreel.api.deps import AllowlistDep, JobStoreDep, OrchestratorDep
from storyreel.schemas.render import RenderJobResponse, RenderVideoRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/render-video",
    response_model=RenderJobResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def render_video(
    render_request: RenderVideoRequest,
    orchestrator: OrchestratorDep,
    allowlist: AllowlistDep,
) -> RenderJobResponse:
    """
    Start a render job.

    Every remote URL is checked against the allowlist before a job exists,
    so a rejected request leaves no job behind. The render itself runs in
    the background; poll ``/render-status/{job_id}`` for progress.
    """
    local_prefix = orchestrator.fetcher.local_prefix
    for url in render_request.remote_urls():
        if not url.startswith(local_prefix):
            allowlist.check(url)

    record = await orchestrator.start(render_request)
    logger.info(
        f"[RENDER API] Queued job {record.job_id} "
        f"({len(render_request.media_items)} media items, {render_request.aspect_ratio})"
    )
    return RenderJobResponse(
        job_id=record.job_id,
        status=record.status.value,
        progress=record.progress,
    )


@router.get(
    "/render-status/{job_id}",
    response_model=RenderJobResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def get_render_status(job_id: str, store: JobStoreDep) -> RenderJobResponse:
    """Get the current state of a render job."""
    record = await store.get_or_raise(job_id)
    return RenderJobResponse(**_response_fields(record))


def _response_fields(record) -> dict:
    return {
        "job_id": record.job_id,
        "status": record.status.value,
        "progress": record.progress,
        "stage": record.stage,
        "video_url": record.video_url,
        "error": record.error,
    }
