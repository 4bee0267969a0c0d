"""
PanelForge Dispatch

Circuit breaking, retries and metrics in front of external services.
"""

from .circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerConfig,
    EndpointHandle,
    EndpointRegistry,
)
from .dispatcher import ResilientDispatcher
from .metrics import DispatchMetrics

__all__ = [
    'BreakerState',
    'CircuitBreaker',
    'CircuitBreakerConfig',
    'EndpointHandle',
    'EndpointRegistry',
    'ResilientDispatcher',
    'DispatchMetrics',
]
