"""
Render orchestration for narrated videos.

This module runs one render job end to end:
1. Create the job workspace
2. Download voiceover, music and media items (concurrently)
3. Normalize each media item into a uniform clip
4. Concatenate the clips into a silent video track
5. Mix voiceover and background music
6. Mux video and audio into the final MP4
7. Publish the artifact and record the terminal job state

Each stage returns a StageResult; ``run`` is the only place that turns a
failed result (or an unexpected exception) into a failed job.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
from urllib.parse import urlsplit

from storyreel.config import Settings, get_settings
from storyreel.exceptions import JobStateError, NoMediaError, RenderTimeoutError, StoryreelError
from storyreel.render.audio_mixer import AudioMixer, MixSettings
from storyreel.render.compositor import TimelineCompositor
from storyreel.render.fetcher import Fetcher
from storyreel.render.muxer import Muxer
from storyreel.render.normalizer import ClipNormalizer, FrameSpec
from storyreel.render.progress import ProgressTracker, RenderStage
from storyreel.schemas.render import MediaItem, RenderVideoRequest
from storyreel.services.job_store import JobRecord, JobStatus, JobStore, new_job_id
from storyreel.utils.media_info import probe_duration
from storyreel.utils.timecode import clip_duration, retime_items

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Voiceover/video length mismatch worth a warning in the logs
DURATION_DRIFT_WARN_S = 1.0

_EXTENSIONS = {"image": ".jpg", "video": ".mp4"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class StageResult(Generic[T]):
    """Outcome of one pipeline stage: a value or the error that stopped it."""

    stage: RenderStage
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return ""
        if isinstance(self.error, StoryreelError):
            return self.error.message
        return str(self.error) or self.error.__class__.__name__


@dataclass
class PlannedClip:
    """One media item scheduled for rendering."""

    index: int
    media_type: str
    url: str
    duration_s: float
    keyframe_effect: Optional[str]
    raw_path: Path
    clip_path: Path


class Workspace:
    """Per-job scratch directory. Removal is idempotent."""

    def __init__(self, root: Path):
        self.root = root

    @classmethod
    def create(cls, base_dir: str | Path, job_id: str) -> "Workspace":
        base = Path(base_dir)
        base.mkdir(parents=True, exist_ok=True)
        root = base / job_id
        root.mkdir()
        return cls(root)

    def path(self, name: str) -> Path:
        return self.root / name

    @property
    def voiceover_path(self) -> Path:
        return self.path("voiceover.mp3")

    @property
    def music_path(self) -> Path:
        return self.path("music.mp3")

    @property
    def manifest_path(self) -> Path:
        return self.path("concat_list.txt")

    @property
    def video_path(self) -> Path:
        return self.path("video_no_audio.mp4")

    @property
    def mixed_audio_path(self) -> Path:
        return self.path("mixed_audio.m4a")

    @property
    def output_path(self) -> Path:
        return self.path("render.mp4")

    def remove(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        if self.root.exists():
            logger.warning(f"[RENDER] Workspace {self.root} could not be fully removed")


def _raw_suffix(url: str, media_type: str) -> str:
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    if suffix and len(suffix) <= 5 and suffix[1:].isalnum():
        return suffix
    return _EXTENSIONS.get(media_type, ".bin")


def plan_clips(
    items: list[MediaItem],
    workspace: Workspace,
    fallback_s: float = 3.0,
) -> list[PlannedClip]:
    """Schedule every media item that has a URL; items without one are skipped."""
    plan = []
    for index, item in enumerate(items):
        if not item.url:
            logger.warning(f"[RENDER] Skipping media item {index} - no URL provided")
            continue
        duration = clip_duration(item.start_time, item.end_time, fallback_s)
        plan.append(
            PlannedClip(
                index=index,
                media_type=item.type,
                url=item.url,
                duration_s=duration,
                keyframe_effect=item.keyframe_effect,
                raw_path=workspace.path(f"raw_media{index}{_raw_suffix(item.url, item.type)}"),
                clip_path=workspace.path(f"media{index}.mp4"),
            )
        )
    return plan


# ============================================================================
# Orchestrator
# ============================================================================


class RenderOrchestrator:
    """
    Runs render jobs and records their state in a JobStore.

    Jobs run concurrently with each other, each in its own workspace.
    Within a job every stage finishes before the next starts; only the
    initial downloads fan out.
    """

    def __init__(
        self,
        store: JobStore,
        fetcher: Optional[Fetcher] = None,
        compositor: Optional[TimelineCompositor] = None,
        mixer: Optional[AudioMixer] = None,
        muxer: Optional[Muxer] = None,
        normalizer_factory: Optional[Callable[[FrameSpec], ClipNormalizer]] = None,
        probe: Optional[Callable[[str], Awaitable[float]]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.fetcher = fetcher or Fetcher(settings=self.settings)
        self.compositor = compositor or TimelineCompositor(self.settings)
        self.mixer = mixer or AudioMixer(self.settings)
        self.muxer = muxer or Muxer(self.settings)
        self.normalizer_factory = normalizer_factory or (
            lambda frame: ClipNormalizer(frame, self.settings)
        )
        self.probe = probe or probe_duration
        self.work_dir = Path(self.settings.render_work_dir)
        self.output_dir = Path(self.settings.render_output_dir)
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def submit(self, request: RenderVideoRequest) -> JobRecord:
        """Create a queued job record for ``request``."""
        record = await self.store.create(
            JobRecord(job_id=new_job_id(), stage=RenderStage.QUEUED.label)
        )
        logger.info(
            f"[RENDER {record.job_id}] Job queued with {len(request.media_items)} media items"
            f"{' and background music' if request.music_url else ''}"
        )
        return record

    async def start(self, request: RenderVideoRequest) -> JobRecord:
        """Create a job and run it in the background."""
        record = await self.submit(request)
        task = asyncio.create_task(self.run(record.job_id, request), name=f"render-{record.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return record

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel running jobs; each one is marked failed and its workspace removed."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, job_id: str, request: RenderVideoRequest) -> JobRecord:
        """
        Execute the full render pipeline for ``job_id``.

        Returns:
            The terminal job record (completed or failed)
        """
        log_prefix = f"[RENDER {job_id}]"
        tracker = ProgressTracker(emit=lambda percent, stage: self._publish_progress(job_id, percent, stage))
        workspace: Optional[Workspace] = None
        result: StageResult[str]

        # Cancellation at any await below, including the terminal write, fails the job
        try:
            try:
                await self.store.update(
                    job_id,
                    status=JobStatus.PROCESSING,
                    stage=RenderStage.PREPARING.label,
                    started_at=_utcnow(),
                )
                await tracker.report(RenderStage.PREPARING)
                workspace = Workspace.create(self.work_dir, job_id)
                logger.info(
                    f"{log_prefix} Starting render: {len(request.media_items)} media items, "
                    f"{request.aspect_ratio} {request.fit_mode}, workspace {workspace.root}"
                )
                result = await self._run_with_deadline(job_id, request, workspace, tracker)
            except Exception as e:
                logger.exception(f"{log_prefix} Unexpected render error")
                result = StageResult(stage=tracker.stage, error=e)

            if workspace is not None:
                workspace.remove()

            if not result.ok:
                logger.error(f"{log_prefix} Failed during {result.stage.value}: {result.error_message}")
                return await self._mark_failed(job_id, result.error_message)

            logger.info(f"{log_prefix} Video rendering completed: {result.value}")
            return await self.store.update(
                job_id,
                status=JobStatus.COMPLETED,
                progress=100,
                stage=RenderStage.COMPLETED.label,
                video_url=result.value,
                completed_at=_utcnow(),
            )
        except asyncio.CancelledError:
            if workspace is not None:
                workspace.remove()
            await self._mark_cancelled(job_id)
            raise

    async def _run_with_deadline(
        self,
        job_id: str,
        request: RenderVideoRequest,
        workspace: Workspace,
        tracker: ProgressTracker,
    ) -> StageResult[str]:
        timeout_s = self.settings.render_job_timeout_s
        pipeline = self._execute(job_id, request, workspace, tracker)
        if timeout_s <= 0:
            return await pipeline
        try:
            return await asyncio.wait_for(pipeline, timeout=timeout_s)
        except asyncio.TimeoutError:
            return StageResult(stage=tracker.stage, error=RenderTimeoutError(timeout_s))

    async def _mark_failed(self, job_id: str, message: str) -> JobRecord:
        return await self.store.update(
            job_id,
            status=JobStatus.FAILED,
            error=message,
            completed_at=_utcnow(),
        )

    async def _mark_cancelled(self, job_id: str) -> None:
        try:
            await self._mark_failed(job_id, "Render cancelled")
        except JobStateError as e:
            # The terminal write landed before the cancellation did
            logger.warning(f"[RENDER {job_id}] Cancelled after finishing: {e.message}")

    async def _publish_progress(self, job_id: str, percent: int, stage: RenderStage) -> None:
        await self.store.update(job_id, progress=percent, stage=stage.label)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _stage(
        self,
        job_id: str,
        stage: RenderStage,
        tracker: ProgressTracker,
        operation: Awaitable[T],
    ) -> StageResult[T]:
        """Run one stage, converting its failure into a StageResult."""
        await self.store.update(job_id, stage=stage.label)
        try:
            value = await operation
        except Exception as e:
            return StageResult(stage=stage, error=e)
        await tracker.complete(stage)
        return StageResult(stage=stage, value=value)

    async def _execute(
        self,
        job_id: str,
        request: RenderVideoRequest,
        workspace: Workspace,
        tracker: ProgressTracker,
    ) -> StageResult[str]:
        log_prefix = f"[RENDER {job_id}]"

        plan = plan_clips(request.media_items, workspace, self.settings.media_fallback_duration_s)
        if not plan:
            return StageResult(stage=RenderStage.PREPARING, error=NoMediaError())

        music_path = workspace.music_path if request.music_url else None

        downloaded = await self._stage(
            job_id,
            RenderStage.DOWNLOADING,
            tracker,
            self._download_all(request, plan, workspace, music_path, tracker),
        )
        if not downloaded.ok:
            return downloaded
        voiceover_s = downloaded.value
        logger.info(f"{log_prefix} Voiceover duration: {voiceover_s:.2f}s")

        if request.sync_to_voiceover:
            self._retime_plan(plan, request, voiceover_s)

        frame = FrameSpec.for_aspect_ratio(request.aspect_ratio, request.fit_mode, self.settings)
        normalized = await self._stage(
            job_id,
            RenderStage.NORMALIZING,
            tracker,
            self._normalize_all(plan, frame, tracker),
        )
        if not normalized.ok:
            return normalized

        composited = await self._stage(
            job_id,
            RenderStage.COMPOSITING,
            tracker,
            self._composite(normalized.value, workspace, voiceover_s, log_prefix),
        )
        if not composited.ok:
            return composited

        mix = self._mix_settings(request)
        mixed = await self._stage(
            job_id,
            RenderStage.MIXING,
            tracker,
            self.mixer.mix(
                workspace.voiceover_path,
                music_path,
                workspace.mixed_audio_path,
                mix.voice_volume,
                mix.music_volume,
            ),
        )
        if not mixed.ok:
            return mixed

        muxed = await self._stage(
            job_id,
            RenderStage.MUXING,
            tracker,
            self.muxer.mux(
                composited.value,
                mixed.value,
                workspace.output_path,
                progress_callback=lambda fraction: tracker.report(RenderStage.MUXING, fraction),
            ),
        )
        if not muxed.ok:
            return muxed

        try:
            video_url = await self._publish_output(job_id, muxed.value)
        except OSError as e:
            return StageResult(stage=RenderStage.MUXING, error=e)
        return StageResult(stage=RenderStage.COMPLETED, value=video_url)

    async def _download_all(
        self,
        request: RenderVideoRequest,
        plan: list[PlannedClip],
        workspace: Workspace,
        music_path: Optional[Path],
        tracker: ProgressTracker,
    ) -> float:
        """Fetch every input concurrently; returns the voiceover duration in seconds."""
        downloads: list[tuple[str, Path]] = [(request.audio_url, workspace.voiceover_path)]
        if music_path is not None:
            downloads.append((request.music_url, music_path))
        downloads.extend((clip.url, clip.raw_path) for clip in plan)

        semaphore = asyncio.Semaphore(max(1, self.settings.render_download_concurrency))
        completed = 0

        async def fetch_one(url: str, destination: Path) -> None:
            nonlocal completed
            async with semaphore:
                await self.fetcher.fetch(url, destination)
            completed += 1
            await tracker.report(RenderStage.DOWNLOADING, completed / len(downloads))

        await _gather_or_cancel([fetch_one(url, dest) for url, dest in downloads])
        return await self.probe(str(workspace.voiceover_path))

    def _retime_plan(self, plan: list[PlannedClip], request: RenderVideoRequest, voiceover_s: float) -> None:
        items = [request.media_items[clip.index] for clip in plan]
        for clip, item in zip(plan, retime_items(items, voiceover_s)):
            clip.duration_s = clip_duration(
                item.start_time, item.end_time, self.settings.media_fallback_duration_s
            )
        logger.info(f"[RENDER] Retimed {len(plan)} clips to span {voiceover_s:.2f}s of voiceover")

    async def _normalize_all(
        self,
        plan: list[PlannedClip],
        frame: FrameSpec,
        tracker: ProgressTracker,
    ) -> list[Path]:
        normalizer = self.normalizer_factory(frame)
        semaphore = asyncio.Semaphore(max(1, self.settings.render_normalize_concurrency))
        completed = 0

        async def normalize_one(clip: PlannedClip) -> None:
            nonlocal completed
            async with semaphore:
                await normalizer.normalize(
                    clip.raw_path,
                    clip.clip_path,
                    clip.media_type,
                    clip.duration_s,
                    index=clip.index,
                    keyframe_effect=clip.keyframe_effect,
                )
            completed += 1
            await tracker.report(RenderStage.NORMALIZING, completed / len(plan))

        if self.settings.render_normalize_concurrency <= 1:
            for clip in plan:
                await normalize_one(clip)
        else:
            await _gather_or_cancel([normalize_one(clip) for clip in plan])

        return [clip.clip_path for clip in plan]

    async def _composite(
        self,
        clips: list[Path],
        workspace: Workspace,
        voiceover_s: float,
        log_prefix: str,
    ) -> Path:
        if self.settings.render_verify_clips:
            await self.compositor.verify_uniform(clips)
        video_path = await self.compositor.concatenate(clips, workspace.video_path, workspace.manifest_path)

        video_s = await self.probe(str(video_path))
        drift = abs(video_s - voiceover_s)
        logger.info(f"{log_prefix} Video track duration: {video_s:.2f}s (voiceover {voiceover_s:.2f}s)")
        if drift > DURATION_DRIFT_WARN_S:
            logger.warning(f"{log_prefix} Video duration differs from voiceover by {drift:.2f}s")
        return video_path

    def _mix_settings(self, request: RenderVideoRequest) -> MixSettings:
        mixing = request.music_mixing
        if mixing is None:
            return MixSettings(
                voice_volume=self.settings.default_voice_volume,
                music_volume=self.settings.default_music_volume,
            )
        mix = MixSettings(
            voice_volume=mixing.voiceover_volume,
            music_volume=mixing.background_music_volume,
            fade_in_s=mixing.fade_in_duration,
            fade_out_s=mixing.fade_out_duration,
        )
        if mix.fade_in_s or mix.fade_out_s:
            logger.debug(
                f"[RENDER] Music fades requested (in {mix.fade_in_s:g}s, out {mix.fade_out_s:g}s); "
                "fades are not applied by the mix stage"
            )
        return mix

    async def _publish_output(self, job_id: str, rendered: Path) -> str:
        """Move the finished MP4 into the shared output directory."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{job_id}.mp4"
        await asyncio.to_thread(shutil.move, str(rendered), str(self.output_dir / filename))
        prefix = self.settings.render_output_url_prefix.rstrip("/")
        return f"{prefix}/{filename}"


async def _gather_or_cancel(coros: list[Awaitable[Any]]) -> list[Any]:
    """Run coroutines concurrently; the first failure cancels the rest."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
