"""
PanelForge Batch Scheduler

Renders panel requests in consecutive fixed-width batches.

Each batch is issued concurrently and fully awaited before the next one
starts. Between batches the scheduler sleeps for an adaptive delay that
shrinks after consecutive fast batches and grows after a failure. Any failed
request fails the whole run; results always come back in input order.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from panelforge.agents.beat_sequencer import Beat
from panelforge.consistency.profile import ConsistencyProfile
from panelforge.core.config import SchedulerConfig
from panelforge.core.exceptions import JobTimeoutError, PanelGenerationError
from panelforge.core.logging_config import get_logger
from panelforge.core.retry import ClockFn, SleepFn

logger = get_logger("pipelines.batch_scheduler")


@dataclass(frozen=True)
class PanelRequest:
    """Everything needed to render one panel."""
    position: int
    beat: Beat
    profile: ConsistencyProfile
    total_count: int
    previous_reference: Optional[str] = None


@dataclass
class PanelResult:
    """Outcome of one rendered panel; produced exactly once per position."""
    position: int
    asset_handle: str
    narration: str = ""
    outcome: str = "rendered"
    latency_seconds: float = 0.0
    attempts: int = 1
    payload: Optional[str] = None
    mime_type: str = "image/png"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "asset_handle": self.asset_handle,
            "narration": self.narration,
            "outcome": self.outcome,
            "latency_seconds": round(self.latency_seconds, 4),
            "attempts": self.attempts,
            "payload_length": len(self.payload or ""),
            "mime_type": self.mime_type,
        }


PanelWorker = Callable[[PanelRequest], Awaitable[PanelResult]]


@dataclass
class BatchStats:
    """Timing of one batch."""
    batch_index: int
    first_position: int
    last_position: int
    duration_seconds: float
    delay_after_seconds: float = 0.0
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch": self.batch_index,
            "positions": [self.first_position, self.last_position],
            "duration_seconds": round(self.duration_seconds, 4),
            "delay_after_seconds": round(self.delay_after_seconds, 4),
            "failed": self.failed,
        }


class BatchScheduler:
    """
    Bounded-concurrency batch runner with adaptive pacing.

    Pacing state lives on the instance; use one scheduler per job.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ):
        self.config = config or SchedulerConfig()
        if self.config.batch_width < 1:
            raise ValueError("batch_width must be at least 1")
        self._sleep = sleep
        self._clock = clock
        self._delay = self.config.initial_delay
        self._fast_streak = 0
        self.stats: List[BatchStats] = []

    @property
    def current_delay(self) -> float:
        return self._delay

    def record_batch_outcome(self, duration: float, success: bool) -> float:
        """
        Adapt the inter-batch delay to the last batch.

        Returns:
            The delay to use before the next batch
        """
        cfg = self.config
        if not success:
            self._fast_streak = 0
            self._delay = min(max(self._delay, cfg.min_delay) * cfg.failure_backoff_factor, cfg.max_delay)
            logger.debug(f"Batch failed; delay raised to {self._delay:.3f}s")
        elif duration < cfg.fast_batch_threshold:
            self._fast_streak += 1
            if self._fast_streak >= cfg.fast_batches_to_speed_up:
                self._delay = max(round(self._delay - cfg.delay_step, 6), cfg.min_delay)
                logger.debug(f"Fast batches x{self._fast_streak}; delay lowered to {self._delay:.3f}s")
        else:
            self._fast_streak = 0
        return self._delay

    async def run(
        self,
        requests: List[PanelRequest],
        worker: PanelWorker,
        deadline: Optional[float] = None,
    ) -> List[PanelResult]:
        """
        Render all requests.

        Args:
            requests: Panel requests ordered by position
            worker: Coroutine function rendering one request
            deadline: Absolute time on the scheduler clock; checked between batches

        Returns:
            Results in the same order as requests

        Raises:
            PanelGenerationError: A request in a batch failed
            JobTimeoutError: The deadline passed at a batch boundary
        """
        width = self.config.batch_width
        total = len(requests)
        results: List[Optional[PanelResult]] = [None] * total
        batch_starts = list(range(0, total, width))
        started = self._clock()
        last_completed = -1

        logger.info(f"Scheduling {total} panels into {len(batch_starts)} batches (width={width})")

        for batch_index, start in enumerate(batch_starts):
            if deadline is not None and self._clock() >= deadline:
                elapsed = self._clock() - started
                logger.error(f"Deadline reached after panel {last_completed} ({elapsed:.1f}s)")
                raise JobTimeoutError(last_completed, elapsed)

            batch = list(requests[start:start + width])
            if start > 0 and batch[0].previous_reference is None:
                batch[0] = replace(batch[0], previous_reference=results[start - 1].asset_handle)

            batch_started = self._clock()
            outcomes = await asyncio.gather(*(worker(r) for r in batch), return_exceptions=True)
            duration = self._clock() - batch_started

            failures = [
                (request.position, outcome)
                for request, outcome in zip(batch, outcomes)
                if isinstance(outcome, BaseException)
            ]
            stats = BatchStats(
                batch_index=batch_index,
                first_position=batch[0].position,
                last_position=batch[-1].position,
                duration_seconds=duration,
            )
            self.stats.append(stats)

            if failures:
                stats.failed = True
                self.record_batch_outcome(duration, success=False)
                position, cause = min(failures, key=lambda f: f[0])
                elapsed = self._clock() - started
                logger.error(
                    f"Batch {batch_index + 1}/{len(batch_starts)} failed at panel {position}: {cause}"
                )
                raise PanelGenerationError(position, cause, elapsed) from cause

            for offset, outcome in enumerate(outcomes):
                results[start + offset] = outcome
            last_completed = batch[-1].position

            delay = self.record_batch_outcome(duration, success=True)
            logger.info(
                f"Batch {batch_index + 1}/{len(batch_starts)} done in {duration:.2f}s "
                f"(panels {batch[0].position}-{batch[-1].position})"
            )

            if batch_index < len(batch_starts) - 1:
                stats.delay_after_seconds = delay
                await self._sleep(delay)

        return results
