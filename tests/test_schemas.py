"""Tests for the render request wire contract."""

import pytest
from pydantic import ValidationError

from storyreel.render.audio_mixer import MixSettings, sanitize_gain
from storyreel.schemas.render import MusicMixing, RenderJobResponse, RenderVideoRequest


def make_payload(**overrides) -> dict:
    payload = {
        "segments": [{"startTime": "00:00", "endTime": "00:04", "text": "Hello there"}],
        "mediaItems": [
            {
                "type": "image",
                "startTime": "00:00",
                "endTime": "00:02",
                "description": "sunrise",
                "url": "https://images.pexels.com/a.jpg",
                "keyframeEffect": "zoomin",
            },
            {"type": "video", "startTime": "00:02", "endTime": "00:04", "url": None},
        ],
        "audioUrl": "https://cdn.murf.ai/voice.mp3",
    }
    payload.update(overrides)
    return payload


class TestSanitizeGain:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (0.5, 0.5),
            (30, 0.3),
            (100, 1.0),
            (250, 1.0),
            (-0.5, 0.0),
            (1, 1.0),
        ],
    )
    def test_rescale_and_clamp(self, value, expected):
        assert sanitize_gain(value, 0.2) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "loud", float("nan"), float("inf")])
    def test_invalid_uses_default(self, value):
        assert sanitize_gain(value, 0.2) == 0.2

    def test_mix_settings_sanitizes(self):
        mix = MixSettings(voice_volume=80, music_volume=20, fade_in_s=-1)
        assert mix.voice_volume == pytest.approx(0.8)
        assert mix.music_volume == pytest.approx(0.2)
        assert mix.fade_in_s == 0.0


class TestRenderVideoRequest:
    def test_parses_camel_case(self):
        request = RenderVideoRequest.model_validate(make_payload())

        assert request.audio_url == "https://cdn.murf.ai/voice.mp3"
        assert request.media_items[0].keyframe_effect == "zoomin"
        assert request.media_items[1].url is None
        assert request.aspect_ratio == "16:9"
        assert request.fit_mode == "fit"
        assert request.music_url is None
        assert request.music_mixing is None
        assert request.sync_to_voiceover is False

    def test_percentage_volumes_are_rescaled(self):
        request = RenderVideoRequest.model_validate(
            make_payload(musicMixing={"backgroundMusicVolume": 30, "voiceoverVolume": 90})
        )

        assert request.music_mixing.background_music_volume == pytest.approx(0.3)
        assert request.music_mixing.voiceover_volume == pytest.approx(0.9)

    def test_music_mixing_defaults(self):
        mixing = MusicMixing()
        assert mixing.background_music_volume == 0.3
        assert mixing.voiceover_volume == 1.0
        assert mixing.fade_in_duration == 1.0
        assert mixing.fade_out_duration == 1.0

    def test_blank_music_url_is_none(self):
        request = RenderVideoRequest.model_validate(make_payload(musicUrl="  "))
        assert request.music_url is None

    def test_remote_urls_in_request_order(self):
        request = RenderVideoRequest.model_validate(
            make_payload(musicUrl="https://pixabay.com/music.mp3")
        )
        assert request.remote_urls() == [
            "https://cdn.murf.ai/voice.mp3",
            "https://pixabay.com/music.mp3",
            "https://images.pexels.com/a.jpg",
        ]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"audioUrl": ""},
            {"aspectRatio": "4:3"},
            {"fitMode": "stretch"},
            {"mediaItems": [{"type": "audio", "startTime": "0", "endTime": "1"}]},
            {"musicMixing": {"fadeInDuration": -1}},
        ],
    )
    def test_rejects_invalid(self, overrides):
        with pytest.raises(ValidationError):
            RenderVideoRequest.model_validate(make_payload(**overrides))

    def test_missing_audio_url(self):
        payload = make_payload()
        del payload["audioUrl"]
        with pytest.raises(ValidationError):
            RenderVideoRequest.model_validate(payload)


class TestRenderJobResponse:
    def test_serializes_with_camel_case(self):
        response = RenderJobResponse(job_id="abc", status="completed", progress=100, video_url="/output/abc.mp4")
        assert response.model_dump(by_alias=True, exclude_none=True) == {
            "jobId": "abc",
            "status": "completed",
            "progress": 100,
            "videoUrl": "/output/abc.mp4",
        }
