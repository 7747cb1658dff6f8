from storyreel.render.allowlist import UrlAllowlist
from storyreel.render.audio_mixer import AudioMixer, MixSettings
from storyreel.render.compositor import TimelineCompositor
from storyreel.render.fetcher import Fetcher
from storyreel.render.muxer import Muxer
from storyreel.render.normalizer import ClipNormalizer, FrameSpec
from storyreel.render.progress import ProgressTracker, RenderStage

__all__ = [
    "UrlAllowlist",
    "AudioMixer",
    "MixSettings",
    "TimelineCompositor",
    "Fetcher",
    "Muxer",
    "ClipNormalizer",
    "FrameSpec",
    "ProgressTracker",
    "RenderStage",
]
