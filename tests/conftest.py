# tests/conftest.py
import io
import os
import tempfile

import pytest
from PIL import Image

# The server module builds its store and config holder at import time
_server_dir = tempfile.mkdtemp(prefix="framespeak-test-")
os.environ.setdefault("FRAMESPEAK_VIDEOS_DIR", os.path.join(_server_dir, "videos"))
os.environ.setdefault("FRAMESPEAK_FRAMES_DIR", os.path.join(_server_dir, "frames"))
os.environ.setdefault("FRAMESPEAK_DB_PATH", os.path.join(_server_dir, "framespeak.db"))
os.environ.setdefault("FRAMESPEAK_CONFIG_PATH", os.path.join(_server_dir, "llm_config.json"))


def make_png(width: int = 320, height: int = 240, color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()
