"""
Startup validation and environment checks.

Validates configuration and service settings before a job is started.
"""

from dataclasses import dataclass, field
from typing import List

from .config import PanelforgeConfig
from .env_loader import get_render_api_token
from .exceptions import InvalidConfigError


@dataclass
class ValidationResult:
    """Result of environment validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_environment(config: PanelforgeConfig, offline: bool = False) -> ValidationResult:
    """
    Validate configuration for a run.

    Checks:
    - Configuration values are consistent
    - A render URL is configured unless running offline
    - The render token is present (warning only; some services are open)

    Returns:
        ValidationResult with validation status and any errors/warnings
    """
    errors = []
    warnings = []

    try:
        config.validate()
    except InvalidConfigError as e:
        errors.append(str(e))

    if not offline:
        if not config.dispatch.render_url:
            errors.append(
                "No render service configured. Set PANELFORGE_RENDER_URL, "
                "pass --render-url, or run with --offline"
            )
        if not get_render_api_token():
            warnings.append("PANELFORGE_RENDER_TOKEN not set - requests will be unauthenticated")

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings
    )
