from typing import Annotated

from fastapi import Depends, Request

from storyreel.config import Settings, get_settings
from storyreel.render.allowlist import UrlAllowlist
from storyreel.render.pipeline import RenderOrchestrator
from storyreel.services.job_store import JobStore


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_orchestrator(request: Request) -> RenderOrchestrator:
    return request.app.state.orchestrator


def get_allowlist(settings: Annotated[Settings, Depends(get_settings)]) -> UrlAllowlist:
    return UrlAllowlist.from_settings(settings)


JobStoreDep = Annotated[JobStore, Depends(get_job_store)]
OrchestratorDep = Annotated[RenderOrchestrator, Depends(get_orchestrator)]
AllowlistDep = Annotated[UrlAllowlist, Depends(get_allowlist)]
