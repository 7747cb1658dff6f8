"""
Tests for voiceover/music mixing.

Test cases:
1. Filter graph and command construction
2. Voiceover passthrough without music
3. Music gain measured on decoded PCM
4. Voiceover length governs the mix
"""

from pathlib import Path

import pytest
from conftest import requires_ffmpeg, run_ffmpeg_sync
from media_helpers import decode_pcm, probe, rms

from storyreel.exceptions import MixError
from storyreel.render.audio_mixer import AudioMixer


class TestBuildCommand:
    def test_filter_graph(self, test_settings):
        graph = AudioMixer(test_settings).build_filter(1.0, 0.2)

        assert "[0:a]volume=1[voice]" in graph
        assert "[1:a]aloop=loop=-1:size=2e9,volume=0.2[music]" in graph
        assert "amix=inputs=2:duration=first:dropout_transition=0:normalize=0" in graph

    def test_command_encodes_aac(self, test_settings):
        cmd = AudioMixer(test_settings).build_command("voice.mp3", "music.mp3", "out.m4a", 1.0, 0.3)

        assert cmd[cmd.index("-map") + 1] == "[aout]"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[-1] == "out.m4a"


class TestPassthrough:
    @pytest.mark.asyncio
    async def test_no_music_returns_voiceover(self, test_settings, temp_output_dir: Path):
        voiceover = temp_output_dir / "voiceover.mp3"
        voiceover.write_bytes(b"voice")
        output = temp_output_dir / "mixed.m4a"

        result = await AudioMixer(test_settings).mix(voiceover, None, output)

        assert result == voiceover
        assert voiceover.read_bytes() == b"voice"
        assert not output.exists()


@requires_ffmpeg
class TestMixWithFFmpeg:
    @pytest.mark.asyncio
    async def test_music_gain_is_applied(self, test_settings, make_tone, temp_output_dir: Path):
        silence = temp_output_dir / "silence.wav"
        run_ffmpeg_sync("-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo", "-t", "3", str(silence))
        music = make_tone("music.wav", duration_s=3.0, frequency=440)

        mixed = await AudioMixer(test_settings).mix(
            silence, music, temp_output_dir / "mixed.m4a", voice_gain=1.0, music_gain=0.2
        )

        ratio = rms(decode_pcm(mixed)) / rms(decode_pcm(music))
        assert ratio == pytest.approx(0.2, abs=0.03)

    @pytest.mark.asyncio
    async def test_voiceover_is_untouched_at_unity(self, test_settings, make_tone, temp_output_dir: Path):
        voiceover = make_tone("voice.wav", duration_s=2.0, frequency=220)
        silence = temp_output_dir / "silent_music.wav"
        run_ffmpeg_sync("-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo", "-t", "2", str(silence))

        mixed = await AudioMixer(test_settings).mix(
            voiceover, silence, temp_output_dir / "mixed.m4a", voice_gain=1.0, music_gain=0.5
        )

        ratio = rms(decode_pcm(mixed)) / rms(decode_pcm(voiceover))
        assert ratio == pytest.approx(1.0, abs=0.05)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("music_s", [1.0, 6.0])
    async def test_voiceover_length_governs(self, test_settings, make_tone, temp_output_dir: Path, music_s):
        voiceover = make_tone("voice.wav", duration_s=3.0, frequency=220)
        music = make_tone("music.wav", duration_s=music_s, frequency=440)

        mixed = await AudioMixer(test_settings).mix(voiceover, music, temp_output_dir / "mixed.m4a")

        assert probe(mixed).duration_s == pytest.approx(3.0, abs=0.1)

    @pytest.mark.asyncio
    async def test_unreadable_music_raises(self, test_settings, make_tone, temp_output_dir: Path):
        voiceover = make_tone("voice.wav")
        music = temp_output_dir / "music.mp3"
        music.write_bytes(b"not audio")
        output = temp_output_dir / "mixed.m4a"

        with pytest.raises(MixError):
            await AudioMixer(test_settings).mix(voiceover, music, output)

        assert not output.exists()
