"""
PanelForge Circuit Breaker

Per-endpoint-kind breaker state, shared by every job that calls the same
kind of external operation. Handles are obtained from an EndpointRegistry
owned by the caller; there is no module-level breaker.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from panelforge.core.constants import EndpointKind
from panelforge.core.exceptions import CircuitOpenError
from panelforge.core.logging_config import get_logger

from .metrics import DispatchMetrics

logger = get_logger("dispatch.circuit_breaker")


class BreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Calls flow, failures are counted
    OPEN = "open"            # Calls short-circuit until the cool-down elapses
    HALF_OPEN = "half_open"  # One trial call at a time


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    max_cooldown_seconds: float = 600.0
    success_threshold: int = 2  # Consecutive half-open successes that close the circuit

    @classmethod
    def from_dispatch_config(cls, dispatch_config) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=dispatch_config.failure_threshold,
            cooldown_seconds=dispatch_config.cooldown_seconds,
            max_cooldown_seconds=dispatch_config.max_cooldown_seconds,
            success_threshold=dispatch_config.half_open_success_threshold,
        )


class CircuitBreaker:
    """
    Three-state breaker guarded by an asyncio.Lock.

    Callers run acquire() before the external call and report the outcome
    with record_success(), record_failure() or release().
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._cooldown = self.config.cooldown_seconds
        self._trial_in_flight = False
        self._lock = asyncio.Lock()
        self._trial_done = asyncio.Condition(self._lock)

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def cooldown(self) -> float:
        return self._cooldown

    def retry_in(self) -> float:
        """Seconds until an open circuit admits a trial call."""
        if self._state != BreakerState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self._cooldown - self._clock())

    async def acquire(self) -> None:
        """
        Admit a call or short-circuit it.

        While half-open, later callers wait for the running trial to report
        and are then admitted, queued again, or short-circuited.

        Raises:
            CircuitOpenError: While open
        """
        async with self._trial_done:
            while True:
                if self._state == BreakerState.CLOSED:
                    return

                if self._state == BreakerState.OPEN:
                    remaining = self.retry_in()
                    if remaining > 0:
                        raise CircuitOpenError(self.name, remaining)
                    self._transition_to(BreakerState.HALF_OPEN)

                if not self._trial_in_flight:
                    self._trial_in_flight = True
                    return
                await self._trial_done.wait()

    async def record_success(self) -> None:
        async with self._trial_done:
            if self._state == BreakerState.HALF_OPEN:
                self._trial_in_flight = False
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._cooldown = self.config.cooldown_seconds
                    self._transition_to(BreakerState.CLOSED)
                self._trial_done.notify_all()
            else:
                self._failure_count = 0

    async def record_failure(self) -> None:
        """Count an endpoint-health failure (timeouts, 5xx, rate limits, transport)."""
        async with self._trial_done:
            if self._state == BreakerState.HALF_OPEN:
                self._trial_in_flight = False
                self._cooldown = min(self._cooldown * 2, self.config.max_cooldown_seconds)
                self._transition_to(BreakerState.OPEN)
                self._trial_done.notify_all()
                return

            self._failure_count += 1
            if self._state == BreakerState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition_to(BreakerState.OPEN)

    async def release(self) -> None:
        """Free a half-open trial slot without counting the outcome."""
        async with self._trial_done:
            self._trial_in_flight = False
            self._trial_done.notify_all()

    def _transition_to(self, new_state: BreakerState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == BreakerState.CLOSED:
            self._failure_count = self._success_count = 0
            self._opened_at = None
        elif new_state == BreakerState.OPEN:
            self._opened_at = self._clock()
            self._success_count = 0
        elif new_state == BreakerState.HALF_OPEN:
            self._success_count = 0
            self._trial_in_flight = False

        message = f"CircuitBreaker[{self.name}]: {old_state.value} -> {new_state.value}"
        if new_state == BreakerState.OPEN:
            logger.warning(f"{message} (cool-down {self._cooldown:.1f}s)")
        else:
            logger.info(message)


@dataclass
class EndpointHandle:
    """Breaker and metrics for one endpoint kind."""
    kind: EndpointKind
    breaker: CircuitBreaker
    metrics: DispatchMetrics

    def snapshot(self) -> Dict:
        data = self.metrics.snapshot()
        data["breaker_state"] = self.breaker.state.value
        data["breaker_cooldown"] = self.breaker.cooldown
        return data


class EndpointRegistry:
    """
    Creates endpoint handles on first use and returns the same handle after.

    One registry is shared by every job of a process; tests build their own.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._handles: Dict[EndpointKind, EndpointHandle] = {}

    def get(self, kind: EndpointKind) -> EndpointHandle:
        if kind not in self._handles:
            self._handles[kind] = EndpointHandle(
                kind=kind,
                breaker=CircuitBreaker(kind.value, self.config, self._clock),
                metrics=DispatchMetrics(kind.value),
            )
        return self._handles[kind]

    def snapshot(self) -> Dict[str, Dict]:
        return {kind.value: handle.snapshot() for kind, handle in self._handles.items()}
