"""
Tests for the exception hierarchy.

Tests for panelforge/core/exceptions.py
"""

from panelforge.core.exceptions import (
    CircuitOpenError,
    InputValidationError,
    JobTimeoutError,
    PanelforgeError,
    PanelGenerationError,
    UpstreamAuthError,
    UpstreamContentPolicyError,
    UpstreamErrorKind,
    UpstreamNetworkError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)


class TestPanelforgeError:
    """Tests for the base error."""

    def test_str_includes_details(self):
        error = PanelforgeError("boom", {"position": 3})

        assert str(error) == "boom | Details: {'position': 3}"

    def test_str_without_details(self):
        assert str(PanelforgeError("boom")) == "boom"

    def test_input_validation_field(self):
        error = InputValidationError("story too short", field="story")

        assert error.field == "story"
        assert error.details == {"field": "story"}


class TestUpstreamErrors:
    """Tests for upstream error classification flags."""

    def test_retryable_flags(self):
        assert UpstreamRateLimitError("x").retryable
        assert UpstreamTimeoutError("x").retryable
        assert UpstreamUnavailableError("x").retryable
        assert UpstreamNetworkError("x").retryable
        assert not UpstreamAuthError("x").retryable
        assert not UpstreamContentPolicyError("x").retryable

    def test_circuit_open_is_unavailable(self):
        error = CircuitOpenError("panel_render", 12.5)

        assert isinstance(error, UpstreamUnavailableError)
        assert error.kind == UpstreamErrorKind.UNAVAILABLE
        assert error.retry_in == 12.5

    def test_details_carry_status(self):
        error = UpstreamRateLimitError("slow", status_code=429, retry_after=5.0)

        assert error.details["kind"] == "rate_limit"
        assert error.details["status_code"] == 429
        assert error.details["retry_after"] == 5.0


class TestPipelineErrors:
    """Tests for job failure errors."""

    def test_panel_generation_error_names_position(self):
        cause = UpstreamContentPolicyError("unsafe")
        error = PanelGenerationError(7, cause, elapsed=1.234)

        assert error.position == 7
        assert error.cause is cause
        assert error.details["upstream_kind"] == "content_policy"
        assert error.details["elapsed_seconds"] == 1.234

    def test_job_timeout_reports_progress(self):
        error = JobTimeoutError(last_completed_position=3, elapsed=61.0)

        assert error.last_completed_position == 3
        assert "panel 3" in str(error)
