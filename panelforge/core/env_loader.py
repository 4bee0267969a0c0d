"""
Environment loading for PanelForge.

Reads the project .env at most once so PANELFORGE_* overrides and the render
service token are visible to the config layer. Variables already set in the
process are never replaced.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_env_loaded = False


def get_project_root() -> Path:
    """Directory holding pyproject.toml and the optional .env."""
    return Path(__file__).resolve().parent.parent.parent


def ensure_env_loaded(env_path: Optional[Path] = None) -> bool:
    """
    Load a .env file into os.environ once per process.

    Args:
        env_path: Explicit .env location; defaults to the project root

    Returns:
        True when a file was read by this call
    """
    global _env_loaded

    if _env_loaded:
        return False

    env_path = Path(env_path) if env_path else get_project_root() / ".env"
    if not env_path.is_file():
        return False

    load_dotenv(env_path, override=False)
    _env_loaded = True
    return True


def get_env(key_name: str, fallback_keys: Optional[list[str]] = None) -> Optional[str]:
    """First non-empty value among key_name and fallback_keys, or None."""
    ensure_env_loaded()

    for name in [key_name, *(fallback_keys or [])]:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def get_render_api_token() -> Optional[str]:
    """Bearer token for the render service."""
    return get_env("PANELFORGE_RENDER_TOKEN", ["RENDER_API_TOKEN"])
