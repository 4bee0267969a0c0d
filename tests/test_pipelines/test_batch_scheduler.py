"""
Tests for the batch scheduler.

Tests:
- Result ordering under out-of-order completion
- Fail-fast with the lowest failing position
- Adaptive inter-batch delay
- Deadline handling and previous-panel linkage
"""

import asyncio

import pytest

from panelforge.core.config import SchedulerConfig
from panelforge.core.exceptions import (
    JobTimeoutError,
    PanelGenerationError,
    UpstreamContentPolicyError,
)
from panelforge.pipelines.batch_scheduler import BatchScheduler, PanelRequest, PanelResult


@pytest.fixture
def make_requests(make_beat, sample_profile):
    def factory(count: int):
        return [
            PanelRequest(position=i, beat=make_beat(i), profile=sample_profile, total_count=count)
            for i in range(count)
        ]
    return factory


def handle_for(position: int) -> str:
    return f"mem://panel-{position}"


async def instant_worker(request: PanelRequest) -> PanelResult:
    return PanelResult(position=request.position, asset_handle=handle_for(request.position))


class TestRun:
    """Tests for BatchScheduler.run."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=4), sleep=recording_sleep, clock=fake_clock)
        completion_order = []

        async def worker(request):
            # Later positions in a batch finish first
            await asyncio.sleep((4 - request.position % 4) * 0.002)
            completion_order.append(request.position)
            return await instant_worker(request)

        results = await scheduler.run(make_requests(10), worker)

        assert [r.position for r in results] == list(range(10))
        assert completion_order[:4] == [3, 2, 1, 0]
        assert len(scheduler.stats) == 3
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_failure_names_lowest_position(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=4), sleep=recording_sleep, clock=fake_clock)
        seen = []

        async def worker(request):
            seen.append(request.position)
            if request.position in (5, 6):
                raise UpstreamContentPolicyError("blocked", status_code=400)
            return await instant_worker(request)

        with pytest.raises(PanelGenerationError) as exc_info:
            await scheduler.run(make_requests(10), worker)

        assert exc_info.value.position == 5
        assert isinstance(exc_info.value.cause, UpstreamContentPolicyError)
        assert exc_info.value.details["upstream_kind"] == "content_policy"
        # Third batch never started
        assert sorted(seen) == list(range(8))
        assert scheduler.stats[-1].failed

    @pytest.mark.asyncio
    async def test_delay_decreases_on_fast_batches(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=4), sleep=recording_sleep, clock=fake_clock)

        await scheduler.run(make_requests(20), instant_worker)

        delays = recording_sleep.delays
        assert delays == pytest.approx([0.3, 0.25, 0.2, 0.15])
        assert all(a > b for a, b in zip(delays, delays[1:]))

    @pytest.mark.asyncio
    async def test_failure_raises_delay(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=2), sleep=recording_sleep, clock=fake_clock)
        before = scheduler.current_delay

        async def worker(request):
            if request.position == 3:
                raise RuntimeError("render crashed")
            return await instant_worker(request)

        with pytest.raises(PanelGenerationError):
            await scheduler.run(make_requests(6), worker)

        assert scheduler.current_delay > before
        assert scheduler.current_delay == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_deadline_stops_between_batches(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=4), sleep=recording_sleep, clock=fake_clock)

        async def slow_worker(request):
            fake_clock.advance(5)
            return await instant_worker(request)

        with pytest.raises(JobTimeoutError) as exc_info:
            await scheduler.run(make_requests(12), slow_worker, deadline=fake_clock() + 30)

        assert exc_info.value.last_completed_position == 7

    @pytest.mark.asyncio
    async def test_first_request_of_batch_linked_to_previous_panel(self, make_requests, fake_clock, recording_sleep):
        scheduler = BatchScheduler(SchedulerConfig(batch_width=4), sleep=recording_sleep, clock=fake_clock)
        references = {}

        async def worker(request):
            references[request.position] = request.previous_reference
            return await instant_worker(request)

        await scheduler.run(make_requests(10), worker)

        assert references[4] == handle_for(3)
        assert references[8] == handle_for(7)
        assert references[0] is None
        assert references[5] is None

    @pytest.mark.asyncio
    async def test_empty_request_list(self, fake_clock, recording_sleep):
        scheduler = BatchScheduler(sleep=recording_sleep, clock=fake_clock)

        assert await scheduler.run([], instant_worker) == []


class TestRecordBatchOutcome:
    """Tests for the pacing rule in isolation."""

    def test_floor_respected(self):
        scheduler = BatchScheduler(SchedulerConfig(initial_delay=0.15, min_delay=0.1))

        for _ in range(10):
            scheduler.record_batch_outcome(1.0, success=True)

        assert scheduler.current_delay == pytest.approx(0.1)

    def test_ceiling_respected(self):
        scheduler = BatchScheduler(SchedulerConfig(initial_delay=3.0, max_delay=5.0))

        assert scheduler.record_batch_outcome(1.0, success=False) == 5.0

    def test_slow_batch_resets_streak(self):
        scheduler = BatchScheduler()

        scheduler.record_batch_outcome(1.0, success=True)
        scheduler.record_batch_outcome(45.0, success=True)
        scheduler.record_batch_outcome(1.0, success=True)

        assert scheduler.current_delay == pytest.approx(0.3)

    def test_invalid_width(self):
        with pytest.raises(ValueError):
            BatchScheduler(SchedulerConfig(batch_width=0))
