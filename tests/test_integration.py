# tests/test_integration.py
"""Integration tests - require ffmpeg."""

import io
import pytest
import tempfile
import subprocess
from pathlib import Path

from PIL import Image

# Check if ffmpeg is available
FFMPEG_AVAILABLE = subprocess.run(
    ["which", "ffmpeg"], capture_output=True
).returncode == 0


@pytest.mark.skipif(not FFMPEG_AVAILABLE, reason="ffmpeg not installed")
class TestIntegration:
    """Integration tests that require ffmpeg."""

    @pytest.mark.asyncio
    async def test_extract_from_local_file(self):
        """Load a generated 12-second video and sample it every 5 seconds."""
        from framespeak.extractor import FrameExtractor
        from framespeak.models import SamplingPlan

        with tempfile.TemporaryDirectory() as tmpdir:
            test_video = Path(tmpdir) / "test.mp4"

            # 12 seconds of test pattern at 1920x1080
            cmd = [
                "ffmpeg",
                "-f", "lavfi",
                "-i", "testsrc=duration=12:size=1920x1080:rate=10",
                "-pix_fmt", "yuv420p",
                str(test_video),
                "-y"
            ]
            subprocess.run(cmd, capture_output=True, check=True)

            extractor = FrameExtractor(output_base_dir=str(Path(tmpdir) / "frames"))
            handle = extractor.load(str(test_video))
            assert handle.width == 1920
            assert handle.height == 1080
            assert 11.5 < handle.duration < 12.5

            frames = await extractor.extract(handle, SamplingPlan(interval_seconds=5, max_frames=100))

            assert [f.timestamp for f in frames] == [0.0, 5.0, 10.0]
            for frame in frames:
                assert Path(frame.thumbnail).exists()
                with Image.open(io.BytesIO(frame.image)) as picture:
                    assert picture.size == (1280, 720)

            extractor.release(handle, remove_files=True)
            extractor.release(handle, remove_files=True)
            assert not any(Path(f.thumbnail).exists() for f in frames)

    def test_load_rejects_non_video(self):
        from framespeak.extractor import FrameExtractor, LoadError

        with tempfile.TemporaryDirectory() as tmpdir:
            bogus = Path(tmpdir) / "notes.mp4"
            bogus.write_text("not a video")
            with pytest.raises(LoadError):
                FrameExtractor(output_base_dir=tmpdir).load(str(bogus))
