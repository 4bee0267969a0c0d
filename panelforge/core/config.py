"""
PanelForge Configuration Management

Dataclass configuration with JSON loading, environment overrides and validation.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import DEFAULT_QUALITY_WEIGHTS, DEFAULT_SIZE_HINT, LEARNING_SCORE_THRESHOLD
from .env_loader import ensure_env_loaded
from .exceptions import ConfigurationError, InvalidConfigError
from .retry import RetryPolicy

DEFAULT_CONFIG_PATH = Path("config/panelforge_config.json")


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k in cls.__dataclass_fields__}


@dataclass
class DispatchConfig:
    """Render service endpoint and circuit breaker settings."""
    render_url: Optional[str] = None
    timeout_seconds: float = 90.0  # Per call
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    max_cooldown_seconds: float = 600.0
    half_open_success_threshold: int = 2
    size_hint: str = DEFAULT_SIZE_HINT

    @classmethod
    def from_dict(cls, data: dict) -> 'DispatchConfig':
        return cls(**_known_fields(cls, data))


@dataclass
class SchedulerConfig:
    """Batch width and adaptive pacing settings."""
    batch_width: int = 4
    initial_delay: float = 0.3
    min_delay: float = 0.1
    max_delay: float = 5.0
    delay_step: float = 0.05
    fast_batch_threshold: float = 30.0  # Seconds; a batch under this counts as fast
    fast_batches_to_speed_up: int = 2
    failure_backoff_factor: float = 2.0
    job_deadline_seconds: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'SchedulerConfig':
        return cls(**_known_fields(cls, data))


@dataclass
class PromptConfig:
    """Prompt compiler limits."""
    max_length: int = 4000
    identity_min_length: int = 200
    art_style: str = "vibrant comic book illustration"

    @classmethod
    def from_dict(cls, data: dict) -> 'PromptConfig':
        return cls(**_known_fields(cls, data))


@dataclass
class QualityConfig:
    """Quality scoring weights and learning trigger."""
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_QUALITY_WEIGHTS))
    learning_threshold: int = LEARNING_SCORE_THRESHOLD
    feedback_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'QualityConfig':
        config = cls()
        if 'weights' in data:
            config.weights = {**config.weights, **data['weights']}
        config.learning_threshold = data.get('learning_threshold', config.learning_threshold)
        if data.get('feedback_path'):
            config.feedback_path = Path(data['feedback_path'])
        return config


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    log_file: Optional[Path] = None
    verbose: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> 'LoggingConfig':
        return cls(
            level=data.get('level', 'INFO'),
            log_file=Path(data['log_file']) if data.get('log_file') else None,
            verbose=data.get('verbose', False),
        )


@dataclass
class PanelforgeConfig:
    """Main configuration class for PanelForge."""

    project_name: str = "PanelForge"
    output_dir: Path = field(default_factory=lambda: Path("output"))

    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    prompt: PromptConfig = field(default_factory=PromptConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> 'PanelforgeConfig':
        """Create PanelforgeConfig from dictionary."""
        config = cls()
        config.project_name = data.get('project_name', config.project_name)
        if 'output_dir' in data:
            config.output_dir = Path(data['output_dir'])

        if 'dispatch' in data:
            config.dispatch = DispatchConfig.from_dict(data['dispatch'])
        if 'retry' in data:
            config.retry = RetryPolicy.from_dict(data['retry'])
        if 'scheduler' in data:
            config.scheduler = SchedulerConfig.from_dict(data['scheduler'])
        if 'prompt' in data:
            config.prompt = PromptConfig.from_dict(data['prompt'])
        if 'quality' in data:
            config.quality = QualityConfig.from_dict(data['quality'])
        if 'logging' in data:
            config.logging = LoggingConfig.from_dict(data['logging'])

        return config

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['output_dir'] = str(self.output_dir)
        data['quality']['feedback_path'] = (
            str(self.quality.feedback_path) if self.quality.feedback_path else None
        )
        data['logging']['log_file'] = (
            str(self.logging.log_file) if self.logging.log_file else None
        )
        return data

    def validate(self) -> None:
        """
        Reject settings that cannot work together.

        Raises:
            InvalidConfigError: On the first invalid value found
        """
        if self.scheduler.batch_width < 1:
            raise InvalidConfigError(
                "batch_width must be at least 1",
                {"batch_width": self.scheduler.batch_width},
            )
        if self.scheduler.min_delay > self.scheduler.max_delay:
            raise InvalidConfigError(
                "min_delay cannot exceed max_delay",
                {"min_delay": self.scheduler.min_delay, "max_delay": self.scheduler.max_delay},
            )
        if not self.scheduler.min_delay <= self.scheduler.initial_delay <= self.scheduler.max_delay:
            raise InvalidConfigError(
                "initial_delay must lie between min_delay and max_delay",
                {"initial_delay": self.scheduler.initial_delay},
            )
        if self.prompt.identity_min_length >= self.prompt.max_length:
            raise InvalidConfigError(
                "identity_min_length must be below max_length",
                {
                    "identity_min_length": self.prompt.identity_min_length,
                    "max_length": self.prompt.max_length,
                },
            )
        if self.retry.max_attempts < 1:
            raise InvalidConfigError(
                "max_attempts must be at least 1",
                {"max_attempts": self.retry.max_attempts},
            )
        if self.dispatch.failure_threshold < 1:
            raise InvalidConfigError(
                "failure_threshold must be at least 1",
                {"failure_threshold": self.dispatch.failure_threshold},
            )
        total = sum(self.quality.weights.values())
        if abs(total - 1.0) > 1e-6:
            raise InvalidConfigError(
                "quality weights must sum to 1.0",
                {"sum": round(total, 6)},
            )
        unknown = set(self.quality.weights) - set(DEFAULT_QUALITY_WEIGHTS)
        if unknown:
            raise InvalidConfigError(
                "unknown quality weight names",
                {"unknown": sorted(unknown)},
            )


# Environment variable -> (section, field, converter)
ENV_OVERRIDES = {
    "PANELFORGE_RENDER_URL": ("dispatch", "render_url", str),
    "PANELFORGE_RENDER_TIMEOUT": ("dispatch", "timeout_seconds", float),
    "PANELFORGE_BATCH_WIDTH": ("scheduler", "batch_width", int),
    "PANELFORGE_JOB_DEADLINE": ("scheduler", "job_deadline_seconds", float),
    "PANELFORGE_MAX_PROMPT_LENGTH": ("prompt", "max_length", int),
    "PANELFORGE_LOG_LEVEL": ("logging", "level", str),
}


def apply_env_overrides(config: PanelforgeConfig) -> PanelforgeConfig:
    """
    Overlay PANELFORGE_* environment variables onto a config.

    Raises:
        InvalidConfigError: When a variable cannot be converted
    """
    ensure_env_loaded()

    for env_name, (section, attr, convert) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise InvalidConfigError(
                f"Invalid value for {env_name}: {raw!r}", {"error": str(e)}
            )
        setattr(getattr(config, section), attr, value)

    return config


def load_config(config_path: Path = None) -> PanelforgeConfig:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to configuration file. If None, uses default.

    Returns:
        Loaded PanelforgeConfig instance
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        # Return default config if file doesn't exist
        return PanelforgeConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return PanelforgeConfig.from_dict(data)
    except json.JSONDecodeError as e:
        raise InvalidConfigError(f"Invalid JSON in config file: {e}")
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Failed to load config: {e}")
