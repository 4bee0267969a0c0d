"""
PanelForge Base Pipeline

Step runner shared by job pipelines. A pipeline is an ordered list of named
steps; each step receives the previous step's output and a context dict
shared across the run. The first failing required step ends the run and the
failure is summarized into the PipelineResult instead of propagating.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar

from panelforge.core.exceptions import PanelforgeError, UpstreamError
from panelforge.core.logging_config import get_logger
from panelforge.core.retry import ClockFn

logger = get_logger("pipelines.base")

InputT = TypeVar('InputT')
OutputT = TypeVar('OutputT')

# Detail keys copied from package errors into failure metadata
FAILURE_DETAIL_KEYS = ("position", "last_completed_position", "upstream_kind", "elapsed_seconds", "field")


class PipelineStatus(Enum):
    """Lifecycle of one run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PipelineStep:
    """A named unit of work; optional steps may fail without ending the run."""
    name: str
    description: str
    required: bool = True


@dataclass
class StepProgress:
    """Progress event emitted before each step starts."""
    pipeline: str
    step: str
    index: int
    total: int

    @property
    def percent(self) -> float:
        return self.index / self.total * 100 if self.total else 100.0


@dataclass
class PipelineResult(Generic[OutputT]):
    """Outcome of a run."""
    status: PipelineStatus
    output: Optional[OutputT] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)
    duration_seconds: float = 0.0
    step_durations: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == PipelineStatus.COMPLETED


def failure_metadata(error: BaseException) -> Dict[str, Any]:
    """Summarize an exception for a failed PipelineResult."""
    metadata: Dict[str, Any] = {"error_kind": type(error).__name__}
    if isinstance(error, PanelforgeError):
        metadata.update({k: error.details[k] for k in FAILURE_DETAIL_KEYS if k in error.details})
    if isinstance(error, UpstreamError):
        metadata["upstream_kind"] = error.kind.value
    return metadata


@dataclass(eq=False)
class RunState:
    """Mutable state of one in-flight run."""
    status: PipelineStatus = PipelineStatus.PENDING
    step: Optional[str] = None
    cancelled: bool = False


class BasePipeline(ABC, Generic[InputT, OutputT]):
    """
    Runs steps in order and times each one.

    Subclasses list their steps in _define_steps() and implement
    _execute_step(). One instance may serve several runs at once; each run
    keeps its own RunState. A cancel() request reaches every in-flight run
    before its next step.
    """

    def __init__(self, name: str, clock: ClockFn = time.monotonic):
        self.name = name
        self._clock = clock
        self._steps: List[PipelineStep] = []
        self._active_runs: Set[RunState] = set()
        self._last_run = RunState()
        self._progress_callback: Optional[Callable[[StepProgress], None]] = None

        self._define_steps()

    @abstractmethod
    def _define_steps(self) -> None:
        """Populate self._steps."""

    @abstractmethod
    async def _execute_step(self, step: PipelineStep, input_data: Any, context: Dict[str, Any]) -> Any:
        """Run one step and return its output."""

    async def run(self, input_data: InputT, context: Optional[Dict[str, Any]] = None) -> PipelineResult[OutputT]:
        """
        Execute every step.

        Args:
            input_data: Input to the first step
            context: Mutable dict shared by all steps of this run

        Returns:
            PipelineResult; on failure the exception and its details are
            attached instead of being raised
        """
        context = context if context is not None else {}
        started = self._clock()
        durations: Dict[str, float] = {}

        state = RunState(status=PipelineStatus.RUNNING)
        self._last_run = state
        self._active_runs.add(state)
        logger.info(f"[{self.name}] started ({len(self._steps)} steps)")
        try:
            return await self._run_steps(state, input_data, context, started, durations)
        finally:
            self._active_runs.discard(state)

    async def _run_steps(
        self,
        state: RunState,
        data: Any,
        context: Dict[str, Any],
        started: float,
        durations: Dict[str, float],
    ) -> PipelineResult[OutputT]:
        try:
            for index, step in enumerate(self._steps):
                if state.cancelled:
                    state.status = PipelineStatus.CANCELLED
                    logger.info(f"[{self.name}] cancelled before '{step.name}'")
                    return PipelineResult(
                        status=PipelineStatus.CANCELLED,
                        duration_seconds=self._clock() - started,
                        step_durations=durations,
                    )

                state.step = step.name
                self._notify(step, index)
                step_started = self._clock()
                try:
                    data = await self._execute_step(step, data, context)
                except Exception as e:
                    if step.required:
                        raise
                    logger.warning(f"[{self.name}] optional step '{step.name}' skipped: {e}")
                finally:
                    durations[step.name] = self._clock() - step_started

        except Exception as e:
            state.status = PipelineStatus.FAILED
            logger.error(f"[{self.name}] failed in '{state.step}': {e}")
            metadata = failure_metadata(e)
            metadata["failed_step"] = state.step
            return PipelineResult(
                status=PipelineStatus.FAILED,
                error=str(e),
                exception=e,
                duration_seconds=self._clock() - started,
                step_durations=durations,
                metadata=metadata,
            )

        state.status = PipelineStatus.COMPLETED
        duration = self._clock() - started
        logger.info(f"[{self.name}] completed in {duration:.2f}s")
        return PipelineResult(
            status=PipelineStatus.COMPLETED,
            output=data,
            duration_seconds=duration,
            step_durations=durations,
            metadata={"steps_completed": len(self._steps)},
        )

    def cancel(self) -> None:
        """Cancel every run in flight; later runs are unaffected."""
        for state in self._active_runs:
            state.cancelled = True

    def set_progress_callback(self, callback: Callable[[StepProgress], None]) -> None:
        self._progress_callback = callback

    def _notify(self, step: PipelineStep, index: int) -> None:
        logger.debug(f"[{self.name}] step {index + 1}/{len(self._steps)}: {step.name}")
        if self._progress_callback:
            self._progress_callback(StepProgress(self.name, step.name, index + 1, len(self._steps)))

    @property
    def status(self) -> PipelineStatus:
        """Status of the most recently started run."""
        return self._last_run.status

    @property
    def active_runs(self) -> int:
        return len(self._active_runs)

    @property
    def steps(self) -> List[PipelineStep]:
        return list(self._steps)
