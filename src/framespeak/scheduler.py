"""Bounded-concurrency batch analysis of frames."""

import asyncio
import logging
from typing import Callable, Protocol

from framespeak.models import (
    AnalysisFailure,
    AnalysisOutcome,
    AnalysisSuccess,
    BatchProgress,
    BatchResult,
    Description,
    Frame,
    ProviderConfig,
)
from framespeak.providers import DescriptionProvider, ProviderError

logger = logging.getLogger(__name__)

CONCURRENCY_LIMIT = 3


class FrameStateSink(Protocol):
    """Receives frame state changes made during analysis."""

    def set_analyzing(self, frame_id: str, analyzing: bool) -> None: ...

    def update_frame_description(self, frame_id: str, description: Description) -> None: ...


class InMemoryFrameState:
    """Applies state changes directly to Frame objects."""

    def __init__(self, frames: list[Frame]):
        self._frames = {frame.id: frame for frame in frames}

    def set_analyzing(self, frame_id: str, analyzing: bool) -> None:
        self._frames[frame_id].analyzing = analyzing

    def update_frame_description(self, frame_id: str, description: Description) -> None:
        frame = self._frames[frame_id]
        frame.description = description
        frame.analyzing = False


def chunked(items: list, size: int = CONCURRENCY_LIMIT) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchScheduler:
    """Analyze frames in consecutive chunks of at most CONCURRENCY_LIMIT."""

    def __init__(self, provider: DescriptionProvider, concurrency: int = CONCURRENCY_LIMIT):
        self.provider = provider
        self.concurrency = concurrency

    async def analyze_one(self, frame: Frame, config: ProviderConfig) -> AnalysisOutcome:
        """Analyze a single frame, turning any error into a failure outcome."""
        try:
            description = await self.provider.analyze(frame.image, config)
        except ProviderError as e:
            logger.warning(f"Failed to analyze frame {frame.id}: {e}")
            return AnalysisFailure(frame_id=frame.id, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error analyzing frame {frame.id}")
            return AnalysisFailure(frame_id=frame.id, error=f"Unexpected error: {e}")
        return AnalysisSuccess(frame_id=frame.id, description=description)

    async def run_batch(
        self,
        frames: list[Frame],
        config: ProviderConfig,
        on_progress: Callable[[BatchProgress], None] | None = None,
        state: FrameStateSink | None = None
    ) -> BatchResult:
        """
        Describe every frame that has image data and no description yet.

        Each chunk is marked as analyzing, dispatched concurrently and
        fully settled before the next chunk starts. Failures are counted
        and never stop the batch; nothing is retried.
        """
        pending = [f for f in frames if f.description is None and f.image]
        result = BatchResult()
        if not pending:
            return result

        state = state or InMemoryFrameState(pending)
        total = len(pending)
        processed = 0
        logger.info(f"Analyzing {total} frames, {self.concurrency} at a time")

        for chunk in chunked(pending, self.concurrency):
            for frame in chunk:
                state.set_analyzing(frame.id, True)

            outcomes = await asyncio.gather(*(self.analyze_one(frame, config) for frame in chunk))

            for outcome in outcomes:
                if isinstance(outcome, AnalysisSuccess):
                    state.update_frame_description(outcome.frame_id, outcome.description)
                    result.success_count += 1
                else:
                    state.set_analyzing(outcome.frame_id, False)
                    result.failure_count += 1
                result.outcomes.append(outcome)

            processed += len(chunk)
            if on_progress:
                on_progress(BatchProgress(completed=min(processed, total), total=total))

        logger.info(f"Batch finished: {result.success_count} succeeded, {result.failure_count} failed")
        return result
