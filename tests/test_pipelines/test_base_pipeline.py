"""
Tests for Base Pipeline Module

Tests for panelforge/pipelines/base_pipeline.py
"""

import asyncio
from collections import defaultdict

import pytest

from panelforge.core.exceptions import JobTimeoutError, UpstreamContentPolicyError
from panelforge.pipelines.base_pipeline import (
    BasePipeline,
    PipelineResult,
    PipelineStatus,
    PipelineStep,
    failure_metadata,
)


class MockPipeline(BasePipeline):
    """Mock pipeline for testing."""

    def __init__(self, fail_at: str = None, optional: str = None):
        self.fail_at = fail_at
        self.optional = optional
        super().__init__("mock_pipeline")

    def _define_steps(self):
        self._steps = [
            PipelineStep(name, f"Step {name}", required=(name != self.optional))
            for name in ("step1", "step2", "step3")
        ]

    async def _execute_step(self, step, input_data, context):
        if step.name == self.fail_at:
            raise JobTimeoutError(last_completed_position=4, elapsed=12.5)
        context.setdefault("seen", []).append(step.name)
        return f"{input_data}_{step.name}"


class GatedPipeline(BasePipeline):
    """Each run parks in its 'wait' step until the gate named by its input opens."""

    def __init__(self):
        self.gates = defaultdict(asyncio.Event)
        super().__init__("gated_pipeline")

    def _define_steps(self):
        self._steps = [
            PipelineStep("wait", "Wait for the gate"),
            PipelineStep("finish", "Finish"),
        ]

    async def _execute_step(self, step, input_data, context):
        if step.name == "wait":
            await self.gates[input_data].wait()
            if input_data == "fail":
                raise UpstreamContentPolicyError("blocked")
        return input_data


class TestPipelineResult:
    """Tests for PipelineResult class."""

    def test_success_property(self):
        """Test success reflects status."""
        assert PipelineResult(status=PipelineStatus.COMPLETED).success is True
        assert PipelineResult(status=PipelineStatus.FAILED).success is False


class TestFailureMetadata:
    """Tests for failure_metadata."""

    def test_pipeline_error_details(self):
        """Test position details are copied."""
        metadata = failure_metadata(JobTimeoutError(last_completed_position=3, elapsed=1.0))

        assert metadata["error_kind"] == "JobTimeoutError"
        assert metadata["last_completed_position"] == 3

    def test_upstream_kind(self):
        """Test upstream errors report their kind."""
        metadata = failure_metadata(UpstreamContentPolicyError("blocked"))

        assert metadata["upstream_kind"] == "content_policy"

    def test_plain_exception(self):
        """Test non-package errors only report the class."""
        assert failure_metadata(KeyError("x")) == {"error_kind": "KeyError"}


class TestBasePipeline:
    """Tests for BasePipeline class."""

    @pytest.mark.asyncio
    async def test_data_flows_through_steps(self):
        """Test each step receives the previous output."""
        pipeline = MockPipeline()
        context = {}

        result = await pipeline.run("data", context)

        assert result.success
        assert result.output == "data_step1_step2_step3"
        assert result.metadata["steps_completed"] == 3
        assert context["seen"] == ["step1", "step2", "step3"]
        assert set(result.step_durations) == {"step1", "step2", "step3"}
        assert pipeline.status == PipelineStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_required_step_failure(self):
        """Test failure is captured with the step name and the exception."""
        pipeline = MockPipeline(fail_at="step2")

        result = await pipeline.run("data")

        assert result.status == PipelineStatus.FAILED
        assert isinstance(result.exception, JobTimeoutError)
        assert result.metadata["failed_step"] == "step2"
        assert result.metadata["last_completed_position"] == 4
        assert "deadline exceeded" in result.error

    @pytest.mark.asyncio
    async def test_optional_step_failure_skipped(self):
        """Test optional steps may fail without failing the run."""
        pipeline = MockPipeline(fail_at="step2", optional="step2")

        result = await pipeline.run("data")

        assert result.success
        assert result.output == "data_step1_step3"

    @pytest.mark.asyncio
    async def test_progress_callback(self):
        """Test progress is reported once per step."""
        pipeline = MockPipeline()
        updates = []
        pipeline.set_progress_callback(updates.append)

        await pipeline.run("data")

        assert [u.step for u in updates] == ["step1", "step2", "step3"]
        assert updates[-1].percent == 100

    @pytest.mark.asyncio
    async def test_cancel_without_active_run_is_noop(self):
        """Test cancel() with nothing running does not affect the next run."""
        pipeline = MockPipeline()
        pipeline.cancel()

        result = await pipeline.run("data")

        assert result.success
        assert pipeline.active_runs == 0

    def test_steps_copy(self):
        """Test steps returns a copy."""
        pipeline = MockPipeline()

        steps = pipeline.steps
        steps.clear()

        assert len(pipeline.steps) == 3


class TestConcurrentRuns:
    """Tests for several runs sharing one pipeline instance."""

    @pytest.mark.asyncio
    async def test_failed_step_belongs_to_its_own_run(self):
        """Test a failing run reports its own step while another run moves on."""
        pipeline = GatedPipeline()

        failing = asyncio.create_task(pipeline.run("fail"))
        passing = asyncio.create_task(pipeline.run("pass"))
        await asyncio.sleep(0)

        pipeline.gates["pass"].set()
        passed = await passing
        pipeline.gates["fail"].set()
        failed = await failing

        assert passed.success
        assert failed.status == PipelineStatus.FAILED
        assert failed.metadata["failed_step"] == "wait"

    @pytest.mark.asyncio
    async def test_new_run_keeps_earlier_cancel(self):
        """Test starting a run does not clear a cancel aimed at runs in flight."""
        pipeline = GatedPipeline()

        first = asyncio.create_task(pipeline.run("pass"))
        await asyncio.sleep(0)
        pipeline.cancel()
        second = asyncio.create_task(pipeline.run("other"))
        await asyncio.sleep(0)

        pipeline.gates["pass"].set()
        pipeline.gates["other"].set()

        assert (await first).status == PipelineStatus.CANCELLED
        assert (await second).success
