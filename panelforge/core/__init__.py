"""
PanelForge Core Module

Contains core systems including configuration, constants, exceptions, logging and retry.
"""

from .config import PanelforgeConfig, load_config, apply_env_overrides
from .constants import *
from .exceptions import *
from .logging_config import setup_logging, get_logger, LogLevel
from .retry import RetryPolicy, retry_async_call

__all__ = [
    'PanelforgeConfig',
    'load_config',
    'apply_env_overrides',
    'setup_logging',
    'get_logger',
    'LogLevel',
    'RetryPolicy',
    'retry_async_call',
]
