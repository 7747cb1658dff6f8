"""Custom exceptions for the storyreel render service.

Every error carries a machine-readable code and the HTTP status the API layer
should answer with. Pipeline stages raise these; the render orchestrator is the
only place that turns them into a failed job.
"""

from typing import Any


class StoryreelError(Exception):
    """Base exception for all storyreel application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error responses."""
        return {"detail": self.message, "code": self.code}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(StoryreelError):
    """Base class for request validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid render request"


class DisallowedUrlError(ValidationError):
    """URL scheme or host is not on the outbound allowlist."""

    code = "URL_NOT_ALLOWED"
    message = "URL not allowed"

    def __init__(self, url: str | None = None):
        self.url = url
        message = f"URL not allowed: {url}" if url else self.message
        super().__init__(message)


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class RenderJobNotFoundError(StoryreelError):
    """Render job not found."""

    code = "RENDER_JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, job_id: str | None = None):
        self.job_id = job_id
        message = f"Render job not found: {job_id}" if job_id else self.message
        super().__init__(message)


# =============================================================================
# Fetch Errors (502)
# =============================================================================


class FetchError(StoryreelError):
    """A remote resource could not be retrieved."""

    code = "FETCH_FAILED"
    status_code = 502
    message = "Download failed"

    def __init__(self, message: str | None = None, *, url: str | None = None):
        self.url = url
        super().__init__(message)


class FetchHTTPError(FetchError):
    """The remote host answered with a non-2xx status."""

    code = "FETCH_HTTP_ERROR"

    def __init__(self, status: int, url: str):
        self.status = status
        super().__init__(f"HTTP {status}: {url}", url=url)


class FetchTimeoutError(FetchError):
    """The download did not finish within the per-download timeout."""

    code = "FETCH_TIMEOUT"
    status_code = 504

    def __init__(self, url: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Download timeout after {timeout_s:g}s: {url}", url=url)


class LocalPathNotAllowedError(FetchError):
    """A local media path resolves outside the local media directory."""

    code = "LOCAL_PATH_NOT_ALLOWED"
    status_code = 400

    def __init__(self, path: str):
        super().__init__(f"Local file path not allowed: {path}", url=path)


# =============================================================================
# Media Errors (500)
# =============================================================================


class MediaError(StoryreelError):
    """Base class for encode/decode failures."""

    code = "MEDIA_ERROR"
    stage: str = "media"


class ProbeError(MediaError):
    """ffprobe could not read a media file."""

    code = "PROBE_FAILED"
    stage = "probe"
    message = "Failed to probe media"


class NormalizeError(MediaError):
    """A media item could not be normalized into a clip."""

    code = "NORMALIZE_FAILED"
    stage = "normalize"

    def __init__(self, index: int, media_type: str, detail: str):
        self.index = index
        self.media_type = media_type
        super().__init__(f"Failed to normalize media item {index} ({media_type}): {detail}")


class ConcatError(MediaError):
    """Normalized clips could not be concatenated."""

    code = "CONCAT_FAILED"
    stage = "composite"
    message = "Failed to concatenate media"


class MixError(MediaError):
    """Voiceover and music could not be mixed."""

    code = "MIX_FAILED"
    stage = "mix"
    message = "Failed to mix audio"


class MuxError(MediaError):
    """Video and audio could not be combined into the final container."""

    code = "MUX_FAILED"
    stage = "mux"
    message = "Failed to combine video and audio"


# =============================================================================
# Precondition / Job Errors
# =============================================================================


class NoMediaError(StoryreelError):
    """No media item has a usable URL."""

    code = "NO_MEDIA"
    status_code = 400
    message = "No media files to render"


class JobStateError(StoryreelError):
    """A job update would leave a terminal state."""

    code = "INVALID_JOB_STATE"
    status_code = 409
    message = "Render job is already finished"

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Render job {job_id} is already {status}")


class RenderTimeoutError(StoryreelError):
    """The whole job exceeded its wall-clock deadline."""

    code = "RENDER_TIMEOUT"
    status_code = 504

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Render exceeded the {timeout_s:g}s deadline")
