# src/framespeak/extractor.py
"""Interval frame capture using ffprobe, ffmpeg and Pillow."""

import io
import json
import uuid
import shutil
import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Callable, Iterator

from PIL import Image

from framespeak.export import format_timestamp
from framespeak.models import Frame, SamplingPlan, VideoHandle

logger = logging.getLogger(__name__)

MAX_WIDTH = 1280
MAX_HEIGHT = 720
JPEG_QUALITY = 85

ProgressCallback = Callable[[float, Frame], None]


class ExtractionError(Exception):
    """Error during frame extraction."""
    pass


class LoadError(ExtractionError):
    """Video could not be probed or has no usable metadata."""
    pass


class CaptureError(ExtractionError):
    """Seeking to or rasterizing a timestamp failed."""
    pass


def sampling_timestamps(duration: float, plan: SamplingPlan) -> Iterator[float]:
    """Yield 0, interval, 2*interval, ... below duration, at most max_frames."""
    index = 0
    while index < plan.max_frames:
        timestamp = float(index * plan.interval_seconds)
        if timestamp >= duration:
            return
        yield timestamp
        index += 1


def sample_count(duration: float, plan: SamplingPlan) -> int:
    return sum(1 for _ in sampling_timestamps(duration, plan))


def fit_dimensions(width: int, height: int) -> tuple[int, int]:
    """Scale (width, height) into the 1280x720 box keeping the aspect ratio."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid video dimensions: {width}x{height}")

    aspect = width / height
    if aspect > MAX_WIDTH / MAX_HEIGHT:
        return MAX_WIDTH, max(1, round(MAX_WIDTH / aspect))
    return max(1, round(MAX_HEIGHT * aspect)), MAX_HEIGHT


class FrameExtractor:
    """Capture frames from a video at fixed time intervals."""

    def __init__(self, output_base_dir: str, timeout: int = 30):
        self.output_base_dir = Path(output_base_dir)
        self.timeout = timeout
        self._output_dirs: dict[str, list[Path]] = {}

    def create_output_dir(self, video_identifier: str) -> Path:
        """Create a unique output directory for this extraction."""
        unique_id = f"{video_identifier}_{uuid.uuid4().hex[:8]}"
        output_dir = self.output_base_dir / unique_id
        output_dir.mkdir(parents=True, exist_ok=True)
        return output_dir

    def format_timestamp(self, seconds: float) -> str:
        """Format seconds as M:SS or MM:SS timestamp."""
        return format_timestamp(seconds)

    def parse_probe_output(self, output: str) -> dict:
        """Pull duration, width and height out of ffprobe JSON output."""
        try:
            data = json.loads(output)
        except ValueError as e:
            raise LoadError(f"Could not parse video metadata: {e}")

        streams = data.get("streams") or []
        video_stream = next((s for s in streams if s.get("width") and s.get("height")), None)
        if video_stream is None:
            raise LoadError("No video stream found")

        raw_duration = data.get("format", {}).get("duration") or video_stream.get("duration")
        try:
            duration = float(raw_duration)
        except (TypeError, ValueError):
            raise LoadError("Video duration is unavailable")
        if duration <= 0:
            raise LoadError(f"Invalid video duration: {duration}")

        return {
            "duration": duration,
            "width": int(video_stream["width"]),
            "height": int(video_stream["height"]),
        }

    def load(self, video_source: str) -> VideoHandle:
        """Probe a video file for duration and picture size."""
        path = Path(video_source)
        if not path.is_file():
            raise LoadError(f"File not found: {video_source}")

        cmd = [
            "ffprobe",
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,duration:format=duration",
            "-of", "json",
            str(path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise LoadError(f"Probing video timed out after {self.timeout} seconds")
        except FileNotFoundError:
            raise LoadError("ffprobe not found. Ensure ffmpeg is installed.")

        if result.returncode != 0:
            raise LoadError(f"Could not probe video: {result.stderr.strip()}")

        metadata = self.parse_probe_output(result.stdout)
        logger.info(
            f"Loaded {path.name}: {metadata['duration']:.2f}s, "
            f"{metadata['width']}x{metadata['height']}"
        )
        return VideoHandle(
            path=str(path),
            name=path.name,
            size=path.stat().st_size,
            **metadata
        )

    async def extract(
        self,
        handle: VideoHandle,
        plan: SamplingPlan,
        on_progress: ProgressCallback | None = None
    ) -> list[Frame]:
        """
        Capture one frame per sampling timestamp, in order.

        Args:
            handle: Loaded video
            plan: Sampling interval and frame cap
            on_progress: Called with (fraction done, frame) after each capture

        Returns:
            List of frames with JPEG data and thumbnail paths

        Raises:
            CaptureError: On the first timestamp that cannot be captured.
                The frames captured so far are discarded, as they are when
                on_progress raises.
        """
        if handle.released:
            raise CaptureError("Video handle has been released")

        total = sample_count(handle.duration, plan)
        size = fit_dimensions(handle.width, handle.height)
        output_dir = self.create_output_dir(Path(handle.name).stem)
        self._output_dirs.setdefault(handle.path, []).append(output_dir)

        frames = []
        try:
            for i, timestamp in enumerate(sampling_timestamps(handle.duration, plan)):
                frame = await self._capture_frame(handle, timestamp, size, output_dir / f"frame_{i:03d}.jpg")
                frames.append(frame)
                if on_progress:
                    on_progress((i + 1) / total, frame)
        except Exception:
            logger.error(f"Extraction aborted after {len(frames)} of {total} frames")
            shutil.rmtree(output_dir, ignore_errors=True)
            raise

        logger.info(f"Captured {len(frames)} frames to {output_dir}")
        return frames

    async def _capture_frame(
        self,
        handle: VideoHandle,
        timestamp: float,
        size: tuple[int, int],
        output_path: Path
    ) -> Frame:
        raw = await self._grab_picture(handle.path, timestamp)
        try:
            image_data = self.encode_jpeg(raw, size)
            output_path.write_bytes(image_data)
        except OSError as e:
            raise CaptureError(f"Could not encode frame at {timestamp:.2f}s: {e}")

        return Frame(
            id=f"frame-{uuid.uuid4().hex}",
            timestamp=timestamp,
            image=image_data,
            thumbnail=str(output_path),
        )

    def encode_jpeg(self, raw: bytes, size: tuple[int, int]) -> bytes:
        """Resize a decoded picture and re-encode it as JPEG."""
        with Image.open(io.BytesIO(raw)) as picture:
            resized = picture.convert("RGB").resize(size, Image.LANCZOS)
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=JPEG_QUALITY)
        return buffer.getvalue()

    async def _grab_picture(self, video_path: str, timestamp: float) -> bytes:
        """Seek to timestamp and return the picture there as PNG bytes."""
        cmd = [
            "ffmpeg",
            "-v", "error",
            "-ss", f"{timestamp:.3f}",
            "-i", video_path,
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-"
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError:
            raise CaptureError("ffmpeg not found. Ensure ffmpeg is installed.")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CaptureError(f"Seeking to {timestamp:.2f}s timed out after {self.timeout} seconds")

        if process.returncode != 0 or not stdout:
            detail = stderr.decode(errors="replace").strip() or "no picture decoded"
            raise CaptureError(f"Could not capture frame at {timestamp:.2f}s: {detail}")
        return stdout

    def release(self, handle: VideoHandle, remove_files: bool = False) -> None:
        """Release a handle; safe to call more than once."""
        if handle.released:
            return

        output_dirs = self._output_dirs.pop(handle.path, [])
        if remove_files:
            for output_dir in output_dirs:
                shutil.rmtree(output_dir, ignore_errors=True)
        handle.released = True
        logger.info(f"Released video {handle.name}")
