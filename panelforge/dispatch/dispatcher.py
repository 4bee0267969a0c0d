"""
PanelForge Resilient Dispatch Layer

Wraps every call to an external service in a per-endpoint circuit breaker,
a per-call timeout and a retry policy.

Only endpoint-health failures (rate limits, timeouts, 5xx, transport) move
the breaker. Auth and content-policy rejections are surfaced at once and
leave the breaker untouched. Short-circuits raise CircuitOpenError without
calling the service and without spending retry budget.
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from panelforge.core.constants import DEFAULT_SIZE_HINT, EndpointKind
from panelforge.core.exceptions import CircuitOpenError, UpstreamError, UpstreamTimeoutError
from panelforge.core.logging_config import get_logger
from panelforge.core.retry import ClockFn, RetryPolicy, SleepFn, retry_async_call
from panelforge.llm.api_clients import RenderClient, RenderedAsset

from .circuit_breaker import EndpointHandle, EndpointRegistry

logger = get_logger("dispatch.dispatcher")

T = TypeVar("T")


class ResilientDispatcher:
    """
    Guarded access to external services.

    Usage:
        dispatcher = ResilientDispatcher(render_client, registry=registry)
        asset = await dispatcher.render(prompt.text, prompt.reference_assets)
    """

    def __init__(
        self,
        render_client: RenderClient,
        registry: Optional[EndpointRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = 90.0,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.render_client = render_client
        self.registry = registry or EndpointRegistry(clock=clock)
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    async def render(
        self,
        payload: str,
        reference_assets: Optional[Sequence[str]] = None,
        size_hint: str = DEFAULT_SIZE_HINT,
        label: str = "render",
        on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    ) -> RenderedAsset:
        """
        Render one panel payload.

        Raises:
            UpstreamError: Terminal failure after the retry policy gave up
        """
        return await self.call(
            EndpointKind.PANEL_RENDER,
            lambda: self.render_client.render(payload, reference_assets, size_hint),
            label=label,
            on_retry=on_retry,
        )

    async def call(
        self,
        kind: EndpointKind,
        operation: Callable[[], Awaitable[T]],
        label: Optional[str] = None,
        on_retry: Optional[Callable[[BaseException, int, float], None]] = None,
    ) -> T:
        """Run operation under the breaker, timeout and retry policy for kind."""
        handle = self.registry.get(kind)
        return await retry_async_call(
            lambda: self._attempt(handle, operation),
            policy=self.retry_policy,
            sleep=self._sleep,
            clock=self._clock,
            on_retry=on_retry,
            rng=self._rng,
            label=label or kind.value,
        )

    async def _attempt(self, handle: EndpointHandle, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            await handle.breaker.acquire()
        except CircuitOpenError:
            await handle.metrics.record_short_circuit()
            raise

        started = self._clock()
        try:
            result = await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error: UpstreamError = UpstreamTimeoutError(
                f"No response within {self.timeout_seconds:.1f}s",
                endpoint=handle.kind.value,
            )
        except UpstreamError as e:
            error = e
        except BaseException:
            await handle.breaker.release()
            raise
        else:
            await handle.breaker.record_success()
            await handle.metrics.record_success(self._clock() - started)
            return result

        if error.retryable:
            await handle.breaker.record_failure()
        else:
            await handle.breaker.release()
        await handle.metrics.record_failure(error.kind, self._clock() - started)
        raise error
