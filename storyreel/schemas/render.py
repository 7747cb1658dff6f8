from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyreel.render.audio_mixer import sanitize_gain

Transition = Literal[
    "fade", "cut", "fadeblack", "fadewhite", "distance", "wipeleft", "wiperight",
    "wipeup", "wipedown", "slideleft", "slideright", "slideup", "slidedown",
    "circlecrop", "rectcrop", "circleopen", "circleclose", "dissolve",
]

KeyframeEffect = Literal[
    "none", "zoomin", "zoomout", "panleft", "panright", "panup", "pandown", "kenburns",
    "zoominslow", "zoomoutslow", "zoominfast", "zoomoutfast", "panleftup", "panrightup",
    "panleftdown", "panrightdown", "rotate", "spiral", "shake", "drift",
]


class EmotionMarker(BaseModel):
    word: str
    emotion: str


class ScriptSegment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    text: str
    emotion_markers: list[EmotionMarker] | None = Field(default=None, alias="emotionMarkers")


class MediaItem(BaseModel):
    """One image or video placed on the render timeline.

    Presentation hints (transition, thumbnail marker, media source) travel
    with the item but the renderer does not read them.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image", "video"]
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    description: str = ""
    url: str | None = None
    thumbnail: str | None = None
    is_thumbnail_candidate: bool | None = Field(default=None, alias="isThumbnailCandidate")
    suggested_media_source: Literal["stock", "ai"] | None = Field(
        default=None, alias="suggestedMediaSource"
    )
    transition: Transition | None = "fade"
    keyframe_effect: KeyframeEffect | None = Field(default="none", alias="keyframeEffect")


class MusicMixing(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    background_music_volume: float = Field(
        default=0.3, ge=0.0, le=1.0, alias="backgroundMusicVolume"
    )
    voiceover_volume: float = Field(default=1.0, ge=0.0, le=1.0, alias="voiceoverVolume")
    fade_in_duration: float = Field(default=1.0, ge=0.0, alias="fadeInDuration")
    fade_out_duration: float = Field(default=1.0, ge=0.0, alias="fadeOutDuration")

    @field_validator("background_music_volume", mode="before")
    @classmethod
    def rescale_music_volume(cls, v):
        return sanitize_gain(v, 0.3)

    @field_validator("voiceover_volume", mode="before")
    @classmethod
    def rescale_voice_volume(cls, v):
        return sanitize_gain(v, 1.0)


class RenderVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    segments: list[ScriptSegment] = Field(default_factory=list)
    media_items: list[MediaItem] = Field(alias="mediaItems")
    audio_url: str = Field(min_length=1, alias="audioUrl")
    music_url: str | None = Field(default=None, alias="musicUrl")
    aspect_ratio: Literal["16:9", "9:16"] = Field(default="16:9", alias="aspectRatio")
    fit_mode: Literal["fit", "crop"] = Field(default="fit", alias="fitMode")
    music_mixing: MusicMixing | None = Field(default=None, alias="musicMixing")
    # Stretch media offsets so the timeline spans the probed voiceover length
    sync_to_voiceover: bool = Field(default=False, alias="syncToVoiceover")

    @field_validator("music_url", mode="before")
    @classmethod
    def blank_music_is_none(cls, v):
        # A music search with no result arrives as an empty string
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def remote_urls(self) -> list[str]:
        """Every URL the render would download, in request order."""
        urls = [self.audio_url]
        if self.music_url:
            urls.append(self.music_url)
        urls.extend(item.url for item in self.media_items if item.url)
        return urls


class RenderJobResponse(BaseModel):
    """Polling contract for a render job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")
    status: Literal["queued", "processing", "completed", "failed"]
    progress: int = Field(ge=0, le=100)
    stage: str | None = None
    video_url: str | None = Field(default=None, serialization_alias="videoUrl")
    error: str | None = None
