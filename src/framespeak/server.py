# src/framespeak/server.py
"""MCP server for frame extraction and bilingual frame descriptions."""

import os
import logging

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from framespeak.config import ConfigStore
from framespeak.export import format_timestamp, write_export
from framespeak.extractor import FrameExtractor, ExtractionError
from framespeak.models import Frame, FrameInfo, SamplingPlan, ToolResponse
from framespeak.providers import DescriptionProvider, ProviderError
from framespeak.session import VideoSession
from framespeak.storage import FrameStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Configuration from environment or defaults
VIDEOS_DIR = os.environ.get("FRAMESPEAK_VIDEOS_DIR", "/videos")
FRAMES_DIR = os.environ.get("FRAMESPEAK_FRAMES_DIR", "/tmp/framespeak-frames")
DB_PATH = os.environ.get("FRAMESPEAK_DB_PATH", os.path.expanduser("~/.framespeak/framespeak.db"))
CONFIG_PATH = os.environ.get("FRAMESPEAK_CONFIG_PATH", os.path.expanduser("~/.framespeak/llm_config.json"))
VALID_INTERVALS = (3, 5, 10)

# Initialize MCP server
mcp = FastMCP("framespeak")

# Initialize components
config_store = ConfigStore(CONFIG_PATH)
session = VideoSession(
    extractor=FrameExtractor(output_base_dir=FRAMES_DIR),
    provider=DescriptionProvider(),
    store=FrameStore(DB_PATH),
    videos_dir=VIDEOS_DIR,
)


def error_response(message: str) -> dict:
    return ToolResponse(status="error", message=message).model_dump()


def unexpected_error(e: Exception) -> dict:
    logger.exception(f"Unexpected error: {e}")
    return error_response(f"Unexpected error: {str(e)}")


def frame_info(frame: Frame) -> FrameInfo:
    return FrameInfo(
        id=frame.id,
        timestamp=format_timestamp(frame.timestamp),
        thumbnail=frame.thumbnail,
        description=frame.description,
        analyzing=frame.analyzing,
        error=session.frame_errors.get(frame.id),
    )


@mcp.tool()
async def load_video(source: str) -> dict:
    """
    Load a video for frame extraction. Any previously loaded video is released.

    Args:
        source: Path to a video file, or a filename inside the videos directory

    Returns:
        Dictionary with status, video id and duration
    """
    try:
        video = session.load_video(source)
    except (FileNotFoundError, ExtractionError) as e:
        logger.error(f"Load error: {e}")
        return error_response(str(e))
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        video_id=video.id,
        video_duration=format_timestamp(video.duration),
        message=f"Loaded {video.name} ({format_timestamp(video.duration)})",
    ).model_dump()


@mcp.tool()
async def extract_frames(interval: int = 5, max_frames: int = 100) -> dict:
    """
    Capture frames from the loaded video at a fixed interval.

    Args:
        interval: Seconds between frames; one of 3, 5 or 10. Default 5
        max_frames: Maximum frames to extract as safety cap. Default 100

    Returns:
        Dictionary with status and the extracted frames
    """
    if interval not in VALID_INTERVALS:
        return error_response(f"Invalid interval: {interval}. Must be one of 3, 5 or 10")

    if max_frames < 1:
        return error_response(f"Invalid max_frames: {max_frames}. Must be at least 1")

    try:
        frames = await session.extract_frames(SamplingPlan(interval_seconds=interval, max_frames=max_frames))
    except ExtractionError as e:
        logger.error(f"Extraction error: {e}")
        return error_response(str(e))
    except Exception as e:
        return unexpected_error(e)

    video = session.current_video
    logger.info(f"Successfully extracted {len(frames)} frames")
    return ToolResponse(
        status="success",
        video_id=video.id,
        video_duration=format_timestamp(video.duration),
        frames=[frame_info(f) for f in frames],
        message=f"Extracted {len(frames)} frames every {interval}s from {video.name}",
    ).model_dump()


@mcp.tool()
async def list_frames() -> dict:
    """List the frames of the current video with their descriptions."""
    if session.current_video is None:
        return error_response("No video loaded")

    analyzed = sum(1 for f in session.frames if f.description)
    return ToolResponse(
        status="success",
        video_id=session.current_video.id,
        frames=[frame_info(f) for f in session.frames],
        message=f"{len(session.frames)} frames, {analyzed} analyzed",
    ).model_dump()


@mcp.tool()
async def analyze_frame(frame_id: str) -> dict:
    """
    Describe one frame in English and Chinese. Can be repeated to regenerate.

    Args:
        frame_id: Id of a frame from extract_frames or list_frames
    """
    try:
        frame = session.get_frame(frame_id)
    except KeyError:
        return error_response(f"Unknown frame: {frame_id}")

    try:
        description = await session.analyze_frame(frame_id, config_store.config)
    except Exception as e:
        return unexpected_error(e)

    if description is None:
        return ToolResponse(
            status="error",
            frames=[frame_info(frame)],
            failure_count=1,
            message=session.frame_errors.get(frame_id, "Analysis failed"),
        ).model_dump()

    return ToolResponse(
        status="success",
        frames=[frame_info(frame)],
        success_count=1,
        message=f"Analyzed frame at {format_timestamp(frame.timestamp)}",
    ).model_dump()


@mcp.tool()
async def analyze_frames() -> dict:
    """Describe every frame that does not have a description yet, three at a time."""
    config = config_store.config
    if not config.endpoint or not config.model:
        return error_response("Configure the LLM endpoint and model first")

    try:
        result = await session.analyze_all(config)
    except Exception as e:
        return unexpected_error(e)

    messages = {
        "empty": "No frames left to analyze",
        "all_succeeded": f"Analysis complete: {result.success_count} frames",
        "all_failed": f"Analysis failed: {result.failure_count} frames",
        "mixed": f"{result.success_count} analyzed, {result.failure_count} failed",
    }
    return ToolResponse(
        status="error" if result.status == "all_failed" else "success",
        frames=[frame_info(f) for f in session.frames],
        success_count=result.success_count,
        failure_count=result.failure_count,
        message=messages[result.status],
    ).model_dump()


@mcp.tool()
async def test_connection() -> dict:
    """Check that the configured LLM endpoint is reachable."""
    config = config_store.config
    try:
        await session.provider.test_connection(config)
    except ProviderError as e:
        logger.error(f"Connection test failed: {e}")
        return error_response(str(e))
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        message=f"Connected to {config.provider} at {config.endpoint}",
    ).model_dump()


@mcp.tool()
async def get_llm_config() -> dict:
    """Show the current LLM configuration (API key masked)."""
    data = config_store.config.model_dump()
    if data.get("api_key"):
        data["api_key"] = "***"
    return ToolResponse(status="success", message="Current LLM configuration", data=data).model_dump()


@mcp.tool()
async def set_llm_config(
    endpoint: str | None = None,
    model: str | None = None,
    provider: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    custom_prompt: str | None = None
) -> dict:
    """
    Update and save the LLM configuration. Omitted fields keep their value.

    Args:
        endpoint: Chat endpoint URL
        model: Vision model name
        provider: ollama, openai, lmstudio or custom
        api_key: Bearer token, if the provider needs one
        temperature: 0.0-2.0
        max_tokens: 500-8192
        custom_prompt: Replaces the default analysis prompt
    """
    changes = {
        key: value for key, value in {
            "endpoint": endpoint,
            "model": model,
            "provider": provider,
            "api_key": api_key,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "custom_prompt": custom_prompt,
        }.items() if value is not None
    }
    try:
        config = config_store.update(**changes)
    except ValidationError as e:
        return error_response(f"Invalid configuration: {e.errors()[0]['msg']}")
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        message=f"Saved {config.provider} configuration for {config.model}",
    ).model_dump()


@mcp.tool()
async def export_descriptions() -> dict:
    """Write all frame descriptions to a markdown file in the frames directory."""
    analyzed = [f for f in session.frames if f.description]
    if not analyzed:
        return error_response("No analyzed frames to export")

    try:
        path = write_export(session.frames, FRAMES_DIR)
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        message=f"Exported {len(analyzed)} descriptions to {path}",
        data={"path": str(path), "text": session.export_text()},
    ).model_dump()


@mcp.tool()
async def list_videos() -> dict:
    """List stored videos, oldest first."""
    try:
        videos = session.store.get_all_videos()
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        message=f"{len(videos)} stored videos",
        data={"videos": [
            {"id": v.id, "name": v.name, "duration": format_timestamp(v.duration), "frames": len(v.frame_ids)}
            for v in videos
        ]},
    ).model_dump()


@mcp.tool()
async def open_video(video_id: str) -> dict:
    """
    Reopen a stored video with its frames and descriptions.

    Args:
        video_id: Id returned by load_video or list_videos
    """
    try:
        video = session.restore(video_id)
    except KeyError:
        return error_response(f"Unknown video: {video_id}")
    except ExtractionError as e:
        logger.error(f"Load error: {e}")
        return error_response(str(e))
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(
        status="success",
        video_id=video.id,
        video_duration=format_timestamp(video.duration),
        frames=[frame_info(f) for f in session.frames],
        message=f"Opened {video.name} with {len(session.frames)} frames",
    ).model_dump()


@mcp.tool()
async def clear_video() -> dict:
    """Release the current video and delete its frames."""
    try:
        session.clear()
    except Exception as e:
        return unexpected_error(e)

    return ToolResponse(status="success", message="Video cleared").model_dump()


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
