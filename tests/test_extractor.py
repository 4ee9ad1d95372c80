# tests/test_extractor.py
import io
import json
import pytest
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

from PIL import Image

from framespeak.extractor import (
    CaptureError,
    FrameExtractor,
    LoadError,
    fit_dimensions,
    sampling_timestamps,
)
from framespeak.models import SamplingPlan, VideoHandle


def make_handle(duration=12.0, width=1920, height=1080):
    return VideoHandle(path="/videos/clip.mp4", name="clip.mp4", duration=duration, width=width, height=height)


def test_extractor_init():
    extractor = FrameExtractor(output_base_dir="/tmp/frames")
    assert extractor.output_base_dir == Path("/tmp/frames")


def test_create_output_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)
        output_dir = extractor.create_output_dir("test_video")
        assert output_dir.exists()
        assert output_dir.parent == Path(tmpdir)


def test_format_timestamp():
    extractor = FrameExtractor(output_base_dir="/tmp")
    assert extractor.format_timestamp(0) == "0:00"
    assert extractor.format_timestamp(62.5) == "1:02"
    assert extractor.format_timestamp(3661) == "61:01"


def test_sampling_timestamps_start_at_zero_and_stay_below_duration():
    plan = SamplingPlan(interval_seconds=5, max_frames=100)
    assert list(sampling_timestamps(12.0, plan)) == [0.0, 5.0, 10.0]
    assert list(sampling_timestamps(10.0, plan)) == [0.0, 5.0]


@pytest.mark.parametrize("duration,interval,max_frames,expected", [
    (30.0, 3, 100, 10),
    (31.0, 10, 100, 4),
    (600.0, 5, 20, 20),
    (2.0, 10, 100, 1),
])
def test_sampling_timestamp_count(duration, interval, max_frames, expected):
    plan = SamplingPlan(interval_seconds=interval, max_frames=max_frames)
    timestamps = list(sampling_timestamps(duration, plan))
    assert len(timestamps) == expected
    assert timestamps[0] == 0.0
    assert all(a < b for a, b in zip(timestamps, timestamps[1:]))


@pytest.mark.parametrize("width,height,expected", [
    (1920, 1080, (1280, 720)),
    (4000, 1000, (1280, 320)),
    (1080, 1920, (405, 720)),
    (640, 480, (960, 720)),
])
def test_fit_dimensions(width, height, expected):
    assert fit_dimensions(width, height) == expected


@pytest.mark.parametrize("width,height", [(1920, 1080), (3000, 1000), (720, 1280), (333, 777)])
def test_fit_dimensions_keeps_aspect_inside_box(width, height):
    out_w, out_h = fit_dimensions(width, height)
    assert out_w <= 1280 and out_h <= 720
    assert abs(out_w / out_h - width / height) < 0.01 * (width / height)


def test_parse_probe_output():
    extractor = FrameExtractor(output_base_dir="/tmp")
    output = json.dumps({
        "streams": [{"width": 1920, "height": 1080}],
        "format": {"duration": "12.480000"}
    })
    assert extractor.parse_probe_output(output) == {"duration": 12.48, "width": 1920, "height": 1080}


def test_parse_probe_output_without_video_stream():
    extractor = FrameExtractor(output_base_dir="/tmp")
    with pytest.raises(LoadError, match="No video stream"):
        extractor.parse_probe_output(json.dumps({"streams": [], "format": {"duration": "3.0"}}))


def test_parse_probe_output_without_duration():
    extractor = FrameExtractor(output_base_dir="/tmp")
    with pytest.raises(LoadError, match="duration"):
        extractor.parse_probe_output(json.dumps({"streams": [{"width": 10, "height": 10}], "format": {}}))


def test_load_missing_file():
    extractor = FrameExtractor(output_base_dir="/tmp")
    with pytest.raises(LoadError, match="File not found"):
        extractor.load("/nonexistent/missing.mp4")


@pytest.mark.asyncio
async def test_extract_reports_progress_per_frame(png_bytes):
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)
        progress = []

        with patch.object(extractor, "_grab_picture", AsyncMock(return_value=png_bytes)) as grab:
            frames = await extractor.extract(
                make_handle(), SamplingPlan(interval_seconds=5),
                lambda fraction, frame: progress.append((fraction, frame.timestamp))
            )

        assert [f.timestamp for f in frames] == [0.0, 5.0, 10.0]
        assert [call.args[1] for call in grab.call_args_list] == [0.0, 5.0, 10.0]
        assert progress == [(1 / 3, 0.0), (2 / 3, 5.0), (1.0, 10.0)]
        assert len({f.id for f in frames}) == 3

        for frame in frames:
            assert Path(frame.thumbnail).read_bytes() == frame.image
            assert frame.description is None
            assert frame.analyzing is False
            with Image.open(io.BytesIO(frame.image)) as picture:
                assert picture.format == "JPEG"
                assert picture.size == (1280, 720)


@pytest.mark.asyncio
async def test_extract_aborts_on_first_capture_failure(png_bytes):
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)
        grab = AsyncMock(side_effect=[png_bytes, CaptureError("seek failed"), png_bytes])
        progress = []

        with patch.object(extractor, "_grab_picture", grab):
            with pytest.raises(CaptureError, match="seek failed"):
                await extractor.extract(
                    make_handle(), SamplingPlan(interval_seconds=5),
                    lambda fraction, frame: progress.append(fraction)
                )

        assert grab.call_count == 2
        assert len(progress) == 1
        assert list(Path(tmpdir).iterdir()) == []


@pytest.mark.asyncio
async def test_extract_undecodable_picture_is_capture_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)
        with patch.object(extractor, "_grab_picture", AsyncMock(return_value=b"not an image")):
            with pytest.raises(CaptureError, match="Could not encode"):
                await extractor.extract(make_handle(), SamplingPlan(interval_seconds=5))


@pytest.mark.asyncio
async def test_extract_released_handle():
    extractor = FrameExtractor(output_base_dir="/tmp")
    handle = make_handle()
    extractor.release(handle)
    with pytest.raises(CaptureError, match="released"):
        await extractor.extract(handle, SamplingPlan())


@pytest.mark.asyncio
async def test_release_is_idempotent_and_removes_files(png_bytes):
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)
        handle = make_handle(duration=4.0)
        with patch.object(extractor, "_grab_picture", AsyncMock(return_value=png_bytes)):
            frames = await extractor.extract(handle, SamplingPlan(interval_seconds=3))

        assert len(frames) == 2
        extractor.release(handle, remove_files=True)
        extractor.release(handle, remove_files=True)

        assert handle.released is True
        assert list(Path(tmpdir).iterdir()) == []


@pytest.mark.asyncio
async def test_extract_removes_output_when_progress_callback_fails(png_bytes):
    with tempfile.TemporaryDirectory() as tmpdir:
        extractor = FrameExtractor(output_base_dir=tmpdir)

        def on_progress(fraction, frame):
            if fraction > 0.5:
                raise RuntimeError("store unavailable")

        with patch.object(extractor, "_grab_picture", AsyncMock(return_value=png_bytes)):
            with pytest.raises(RuntimeError, match="store unavailable"):
                await extractor.extract(make_handle(), SamplingPlan(interval_seconds=5), on_progress)

        assert list(Path(tmpdir).iterdir()) == []
