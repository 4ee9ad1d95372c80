"""Pydantic models for videos, frames, provider settings and analysis results."""

import time
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"
    LMSTUDIO = "lmstudio"
    CUSTOM = "custom"


class Description(BaseModel):
    """Bilingual frame description."""
    en: str
    zh: str


class VideoHandle(BaseModel):
    """A probed video owned by one session."""
    path: str
    name: str
    size: int = 0
    duration: float
    width: int
    height: int
    released: bool = False


class SamplingPlan(BaseModel):
    """Interval/cap pair controlling which timestamps are captured."""
    model_config = ConfigDict(frozen=True)

    interval_seconds: Literal[3, 5, 10] = 5
    max_frames: int = Field(default=100, ge=1)


class Frame(BaseModel):
    """One timestamped still captured from a video."""
    id: str
    timestamp: float
    image: bytes | None = None
    thumbnail: str | None = None
    description: Description | None = None
    analyzing: bool = False


class VideoInfo(BaseModel):
    """Stored metadata for a loaded video."""
    id: str
    name: str
    path: str | None = None
    duration: float
    size: int = 0
    frame_ids: list[str] = []
    created_at: float = Field(default_factory=time.time)


class ProviderConfig(BaseModel):
    """Connection parameters for a description provider."""
    endpoint: str
    model: str
    api_key: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=500, le=8192)
    # Any string; unknown kinds are rejected by DescriptionProvider
    provider: str = ProviderKind.OLLAMA.value
    custom_prompt: str | None = None


class AnalysisSuccess(BaseModel):
    kind: Literal["success"] = "success"
    frame_id: str
    description: Description


class AnalysisFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    frame_id: str
    error: str


AnalysisOutcome = Union[AnalysisSuccess, AnalysisFailure]


class BatchProgress(BaseModel):
    completed: int
    total: int


class BatchResult(BaseModel):
    """Counts from one batch run; presentation is left to the caller."""
    success_count: int = 0
    failure_count: int = 0
    outcomes: list[AnalysisOutcome] = []

    @property
    def status(self) -> str:
        if self.success_count == 0 and self.failure_count == 0:
            return "empty"
        if self.failure_count == 0:
            return "all_succeeded"
        if self.success_count == 0:
            return "all_failed"
        return "mixed"


class FrameInfo(BaseModel):
    """Frame summary returned from tools (no image bytes)."""
    id: str
    timestamp: str
    thumbnail: str | None = None
    description: Description | None = None
    analyzing: bool = False
    error: str | None = None


class ToolResponse(BaseModel):
    """Response envelope shared by the server tools."""
    status: str  # "success" or "error"
    message: str
    video_id: str | None = None
    video_duration: str | None = None
    frames: list[FrameInfo] = []
    success_count: int = 0
    failure_count: int = 0
    data: dict | None = None
