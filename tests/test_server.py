# tests/test_server.py
import sqlite3
import pytest
from unittest.mock import AsyncMock, patch

from framespeak import server
from framespeak.server import (
    analyze_frame,
    analyze_frames,
    extract_frames,
    load_video,
    set_llm_config,
    test_connection as check_connection,
)
from framespeak.providers import AuthInvalidError


@pytest.mark.asyncio
async def test_extract_frames_invalid_interval():
    """Test that an interval outside 3/5/10 returns error."""
    result = await extract_frames(interval=4, max_frames=10)
    assert result["status"] == "error"
    assert "interval" in result["message"].lower()


@pytest.mark.asyncio
async def test_extract_frames_invalid_max_frames():
    """Test that invalid max_frames returns error."""
    result = await extract_frames(interval=5, max_frames=0)
    assert result["status"] == "error"
    assert "max_frames" in result["message"].lower()


@pytest.mark.asyncio
async def test_extract_frames_without_video():
    server.session.clear()
    result = await extract_frames(interval=5, max_frames=10)
    assert result["status"] == "error"
    assert "no video loaded" in result["message"].lower()


@pytest.mark.asyncio
async def test_load_missing_video():
    result = await load_video(source="does-not-exist.mp4")
    assert result["status"] == "error"
    assert "not found" in result["message"].lower()


@pytest.mark.asyncio
async def test_analyze_unknown_frame():
    result = await analyze_frame(frame_id="frame-missing")
    assert result["status"] == "error"
    assert "unknown frame" in result["message"].lower()


@pytest.mark.asyncio
async def test_analyze_frames_with_nothing_pending():
    server.session.clear()
    result = await analyze_frames()
    assert result["status"] == "success"
    assert result["success_count"] == 0
    assert result["failure_count"] == 0


@pytest.mark.asyncio
async def test_set_llm_config_rejects_bad_temperature():
    result = await set_llm_config(temperature=5.0)
    assert result["status"] == "error"
    assert "invalid configuration" in result["message"].lower()


@pytest.mark.asyncio
async def test_connection_failure_is_reported():
    with patch.object(server.session.provider, "test_connection", AsyncMock(side_effect=AuthInvalidError())):
        result = await check_connection()
    assert result["status"] == "error"
    assert "api key" in result["message"].lower()


@pytest.mark.asyncio
async def test_storage_failure_on_load_becomes_error_response():
    failure = sqlite3.OperationalError("database is locked")
    with patch.object(server.session, "load_video", side_effect=failure):
        result = await load_video(source="clip.mp4")
    assert result["status"] == "error"
    assert "unexpected error" in result["message"].lower()
    assert "database is locked" in result["message"]


@pytest.mark.asyncio
async def test_unexpected_batch_error_becomes_error_response():
    config = server.config_store.config.model_copy(update={"endpoint": "http://localhost:11434/api/chat", "model": "llava"})
    with patch.object(server.config_store, "_config", config):
        with patch.object(server.session, "analyze_all", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await analyze_frames()
    assert result["status"] == "error"
    assert "boom" in result["message"]
