from storyreel.models.base import Base
from storyreel.models.render_job import RenderJob

__all__ = [
    "Base",
    "RenderJob",
]
