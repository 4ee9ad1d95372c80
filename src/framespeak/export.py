"""Plain-text export of analyzed frame descriptions."""

import time
from pathlib import Path

from framespeak.models import Frame

RULE = "---"


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS."""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


def build_export_text(frames: list[Frame]) -> str:
    """
    Render analyzed frames as a markdown document.

    The header gives the total and analyzed frame counts; each analyzed
    frame follows with its ordinal, timestamp and both descriptions,
    separated by horizontal rules.
    """
    analyzed = [frame for frame in frames if frame.description]

    lines = [
        "# FrameSpeak Frame Descriptions",
        "",
        f"Total frames: {len(frames)}",
        f"Analyzed: {len(analyzed)}",
        "",
        RULE,
        "",
    ]
    for index, frame in enumerate(analyzed, start=1):
        lines += [
            f"## Frame {index} (Time: {format_timestamp(frame.timestamp)})",
            "",
            "**English Description:**",
            frame.description.en,
            "",
            "**Chinese Description:**",
            frame.description.zh,
            "",
            RULE,
            "",
        ]
    return "\n".join(lines)


def write_export(frames: list[Frame], output_dir: str) -> Path:
    """Write the export document and return its path."""
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"framespeak-{int(time.time() * 1000)}.md"
    path.write_text(build_export_text(frames), encoding="utf-8")
    return path
