# src/framespeak/session.py
"""One video session: the loaded video, its frames and their analysis state."""

import uuid
import sqlite3
import logging
from pathlib import Path
from typing import Callable

from framespeak.export import build_export_text
from framespeak.extractor import FrameExtractor, LoadError, ProgressCallback
from framespeak.models import (
    AnalysisFailure,
    BatchProgress,
    BatchResult,
    Description,
    Frame,
    ProviderConfig,
    SamplingPlan,
    VideoHandle,
    VideoInfo,
)
from framespeak.providers import DescriptionProvider, ProviderError
from framespeak.scheduler import BatchScheduler
from framespeak.storage import FrameStore

logger = logging.getLogger(__name__)


class VideoSession:
    """
    Owns at most one loaded video at a time.

    Loading a new video releases the previous handle first. Frame state
    changes go through set_analyzing and update_frame_description so the
    store stays in step with memory.
    """

    def __init__(
        self,
        extractor: FrameExtractor,
        provider: DescriptionProvider,
        store: FrameStore,
        videos_dir: str | None = None
    ):
        self.extractor = extractor
        self.provider = provider
        self.store = store
        self.videos_dir = Path(videos_dir) if videos_dir else None
        self.scheduler = BatchScheduler(provider)

        self.handle: VideoHandle | None = None
        self.current_video: VideoInfo | None = None
        self.frames: list[Frame] = []
        self.frame_errors: dict[str, str] = {}
        self.is_extracting = False
        self.extraction_progress = 0.0

    def resolve_source(self, source: str) -> str:
        """Find a video by absolute/relative path or by name in the videos directory."""
        path = Path(source)
        if path.is_file():
            return str(path)
        if self.videos_dir is not None and (self.videos_dir / source).is_file():
            return str(self.videos_dir / source)
        raise FileNotFoundError(f"File not found: {source} (looked in {self.videos_dir})")

    def load_video(self, source: str) -> VideoInfo:
        """Release any current video, then probe and register the new one."""
        self._release_handle()
        self.handle = None
        self.current_video = None
        self.frames = []
        self.frame_errors = {}

        handle = self.extractor.load(self.resolve_source(source))
        video = VideoInfo(
            id=f"video-{uuid.uuid4().hex[:12]}",
            name=handle.name,
            path=handle.path,
            duration=handle.duration,
            size=handle.size,
        )
        self.store.save_video_info(video)

        self.handle = handle
        self.current_video = video
        self.extraction_progress = 0.0
        return video

    async def extract_frames(
        self,
        plan: SamplingPlan,
        on_progress: ProgressCallback | None = None
    ) -> list[Frame]:
        """
        Capture frames for the loaded video, storing each one as it arrives.

        On a capture failure the frames stored during this run are removed
        again and the error propagates; earlier frames are left untouched.
        """
        if self.current_video is None or self.handle is None:
            raise LoadError("No video loaded")

        video = self.current_video
        stored_ids: list[str] = []

        def progress(fraction: float, frame: Frame) -> None:
            self.store.save_frame(frame, video.id)
            stored_ids.append(frame.id)
            self.extraction_progress = fraction
            if on_progress:
                on_progress(fraction, frame)

        self.is_extracting = True
        self.extraction_progress = 0.0
        try:
            frames = await self.extractor.extract(self.handle, plan, progress)
        except Exception:
            for frame_id in stored_ids:
                self.store.delete("frames", frame_id)
            self.extraction_progress = 0.0
            raise
        finally:
            self.is_extracting = False

        for old_frame in self.frames:
            self.store.delete("frames", old_frame.id)

        video.frame_ids = [frame.id for frame in frames]
        self.store.save_video_info(video)
        self.frames = frames
        self.frame_errors = {}
        self.extraction_progress = 1.0
        return frames

    def get_frame(self, frame_id: str) -> Frame:
        for frame in self.frames:
            if frame.id == frame_id:
                return frame
        raise KeyError(f"Unknown frame: {frame_id}")

    def set_analyzing(self, frame_id: str, analyzing: bool) -> None:
        self.get_frame(frame_id).analyzing = analyzing

    def update_frame_description(self, frame_id: str, description: Description) -> None:
        frame = self.get_frame(frame_id)
        frame.description = description
        frame.analyzing = False
        self.frame_errors.pop(frame_id, None)
        self.store.update_frame_description(frame_id, description)

    async def analyze_frame(self, frame_id: str, config: ProviderConfig) -> Description | None:
        """
        Analyze (or re-analyze) one frame on demand.

        A failure is recorded in frame_errors and the frame stays available
        for another attempt.
        """
        frame = self.get_frame(frame_id)
        if not frame.image:
            self.frame_errors[frame_id] = "Analysis failed: frame has no image data"
            return None

        self.frame_errors.pop(frame_id, None)
        self.set_analyzing(frame_id, True)
        try:
            description = await self.provider.analyze(frame.image, config)
        except ProviderError as e:
            logger.warning(f"Analysis of {frame_id} failed: {e}")
            self.frame_errors[frame_id] = f"Analysis failed: {e}"
            return None
        except Exception as e:
            logger.exception(f"Unexpected error analyzing {frame_id}")
            self.frame_errors[frame_id] = f"Analysis failed: {e}"
            return None
        finally:
            self.set_analyzing(frame_id, False)

        self.update_frame_description(frame_id, description)
        return description

    async def analyze_all(
        self,
        config: ProviderConfig,
        on_progress: Callable[[BatchProgress], None] | None = None
    ) -> BatchResult:
        result = await self.scheduler.run_batch(self.frames, config, on_progress, state=self)
        for outcome in result.outcomes:
            if isinstance(outcome, AnalysisFailure):
                self.frame_errors[outcome.frame_id] = f"Analysis failed: {outcome.error}"
        return result

    def export_text(self) -> str:
        return build_export_text(self.frames)

    def restore(self, video_id: str) -> VideoInfo:
        """Reopen a stored video with its frames and descriptions."""
        video = self.store.get_video_info(video_id)
        if video is None:
            raise KeyError(f"Unknown video: {video_id}")

        self._release_handle()
        self.handle = None
        if video.path and Path(video.path).is_file():
            self.handle = self.extractor.load(video.path)

        self.current_video = video
        self.frames = self.store.get_video_frames(video_id)
        self.frame_errors = {}
        self.extraction_progress = 1.0 if self.frames else 0.0
        return video

    def _release_handle(self, remove_files: bool = False) -> None:
        if self.handle is not None:
            self.extractor.release(self.handle, remove_files=remove_files)

    def clear(self) -> None:
        """Drop the current video, its stored records and its frame files."""
        if self.current_video is not None:
            try:
                self.store.delete_video(self.current_video.id)
            except sqlite3.Error as e:
                logger.error(f"Failed to delete video from storage: {e}")

        self._release_handle(remove_files=True)
        self.handle = None
        self.current_video = None
        self.frames = []
        self.frame_errors = {}
        self.is_extracting = False
        self.extraction_progress = 0.0
