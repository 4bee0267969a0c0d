"""
PanelForge Custom Exceptions

Exception classes for error handling throughout PanelForge.
"""

from enum import Enum
from typing import Optional


class PanelforgeError(Exception):
    """Base exception for all PanelForge errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(PanelforgeError):
    """Raised when there's an issue with configuration."""
    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""
    pass


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InputValidationError(PanelforgeError):
    """Raised when a comic request is rejected before any external call."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else {}
        super().__init__(message, details)
        self.field = field


class ConsistencyPrerequisiteMissingError(PanelforgeError):
    """Raised when a panel is compiled or rendered without a consistency profile."""

    def __init__(self, position: Optional[int] = None):
        message = "Consistency profile is required before rendering panels"
        details = {"position": position} if position is not None else {}
        super().__init__(message, details)
        self.position = position


# =============================================================================
# UPSTREAM (RENDER SERVICE) ERRORS
# =============================================================================

class UpstreamErrorKind(Enum):
    """Classification of a failed call to an external service."""
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    CONTENT_POLICY = "content_policy"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    NETWORK = "network"


class UpstreamError(PanelforgeError):
    """Base class for failures reported by an external service."""

    kind: UpstreamErrorKind = UpstreamErrorKind.NETWORK
    retryable: bool = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        endpoint: Optional[str] = None,
    ):
        details = {"kind": self.kind.value}
        if status_code is not None:
            details["status_code"] = status_code
        if retry_after is not None:
            details["retry_after"] = retry_after
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, details)
        self.status_code = status_code
        self.retry_after = retry_after
        self.endpoint = endpoint


class UpstreamAuthError(UpstreamError):
    """Credentials rejected (401/403)."""
    kind = UpstreamErrorKind.AUTH
    retryable = False


class UpstreamRateLimitError(UpstreamError):
    """Service asked us to slow down (429)."""
    kind = UpstreamErrorKind.RATE_LIMIT


class UpstreamContentPolicyError(UpstreamError):
    """Content-safety rejection; retrying the same payload cannot succeed."""
    kind = UpstreamErrorKind.CONTENT_POLICY
    retryable = False


class UpstreamTimeoutError(UpstreamError):
    """No response within the per-call timeout."""
    kind = UpstreamErrorKind.TIMEOUT


class UpstreamUnavailableError(UpstreamError):
    """Service is down (5xx) or short-circuited by the breaker."""
    kind = UpstreamErrorKind.UNAVAILABLE


class CircuitOpenError(UpstreamUnavailableError):
    """Raised without calling the service while the circuit is open."""

    def __init__(self, endpoint: str, retry_in: float):
        super().__init__(
            f"Circuit open for '{endpoint}', retry in {retry_in:.1f}s",
            endpoint=endpoint,
        )
        self.details["retry_in"] = round(retry_in, 3)
        self.retry_in = retry_in


class UpstreamNetworkError(UpstreamError):
    """Transport failure or an unclassified response."""
    kind = UpstreamErrorKind.NETWORK


# =============================================================================
# PIPELINE ERRORS
# =============================================================================

class PipelineError(PanelforgeError):
    """Base exception for pipeline errors."""
    pass


class PanelGenerationError(PipelineError):
    """A panel could not be produced; the job aborts."""

    def __init__(self, position: int, cause: BaseException, elapsed: float):
        message = f"Panel {position} failed: {cause}"
        details = {
            "position": position,
            "cause": type(cause).__name__,
            "elapsed_seconds": round(elapsed, 3),
        }
        if isinstance(cause, UpstreamError):
            details["upstream_kind"] = cause.kind.value
        super().__init__(message, details)
        self.position = position
        self.cause = cause
        self.elapsed = elapsed


class JobTimeoutError(PipelineError):
    """The job deadline passed at a batch boundary."""

    def __init__(self, last_completed_position: int, elapsed: float):
        message = f"Job deadline exceeded after panel {last_completed_position}"
        details = {
            "last_completed_position": last_completed_position,
            "elapsed_seconds": round(elapsed, 3),
        }
        super().__init__(message, details)
        self.last_completed_position = last_completed_position
        self.elapsed = elapsed


class PanelAssemblyError(PipelineError):
    """Beats and rendered panels do not line up."""

    def __init__(self, beat_count: int, result_count: int):
        message = f"Cannot assemble {result_count} panels against {beat_count} beats"
        details = {"beat_count": beat_count, "result_count": result_count}
        super().__init__(message, details)
