import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storyreel.api import render
from storyreel.config import get_settings
from storyreel.exceptions import StoryreelError
from storyreel.render.pipeline import RenderOrchestrator
from storyreel.services.job_store import SqlJobStore, create_job_store

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# StaticFiles checks the directory when the app is built
Path(settings.render_output_dir).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    Path(settings.render_work_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.local_media_dir).mkdir(parents=True, exist_ok=True)
    store = create_job_store(settings)
    app.state.job_store = store
    app.state.orchestrator = RenderOrchestrator(store, settings=settings)
    logger.info(f"[APP] {settings.app_name} {settings.app_version} ({settings.environment}) started")
    yield
    # Shutdown
    await app.state.orchestrator.shutdown()
    if isinstance(store, SqlJobStore):
        store.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoryreelError)
async def storyreel_exception_handler(request: Request, exc: StoryreelError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return request validation errors (422) with a readable first message."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"
    return JSONResponse(
        status_code=422,
        content={"detail": message, "code": "VALIDATION_ERROR"},
    )


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Routers
app.include_router(render.router, prefix="/api", tags=["render"])

# Finished renders are served from here
app.mount(
    settings.render_output_url_prefix,
    StaticFiles(directory=settings.render_output_dir),
    name="output",
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}
