from storyreel.schemas.render import (
    MediaItem,
    MusicMixing,
    RenderJobResponse,
    RenderVideoRequest,
    ScriptSegment,
)

__all__ = [
    "MediaItem",
    "MusicMixing",
    "RenderJobResponse",
    "RenderVideoRequest",
    "ScriptSegment",
]
