"""
PanelForge - Consistency-Constrained Comic Generation

Turns a free-text story into an ordered, paged and quality-graded comic.
Story beats are rendered through an external image service under bounded
concurrency, with a circuit breaker and backoff in front of the service and
a per-job consistency profile keeping the recurring character and setting
stable across panels.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "PanelForge Team"
__project__ = "PanelForge"

from pathlib import Path

# .env must be read before config modules look at PANELFORGE_* variables
from panelforge.core.env_loader import ensure_env_loaded
ensure_env_loaded()

from panelforge.core.config import PanelforgeConfig, load_config
from panelforge.pipelines.comic_pipeline import ComicBook, ComicPipeline, ComicRequest

PACKAGE_ROOT = Path(__file__).parent
PROJECT_ROOT = PACKAGE_ROOT.parent

__all__ = [
    "__version__",
    "__author__",
    "__project__",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "PanelforgeConfig",
    "load_config",
    "ComicBook",
    "ComicPipeline",
    "ComicRequest",
]
