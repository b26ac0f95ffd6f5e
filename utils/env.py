"""Environment helper utilities.

Loads a `.env` file from the project root so that settings such as
``OPENAI_API_KEY`` or ``REDIS_URL`` become available via ``os.getenv``.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

__all__ = ["load_project_dotenv", "env_flag"]


def _find_project_root(start: Path | None = None) -> Path:
    """Walk upwards until a directory containing `pyproject.toml` is found."""
    current = start or Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").exists():
            return current
        if current.parent == current:
            break
        current = current.parent
    return Path(__file__).resolve().parent


def load_project_dotenv(start: Path | None = None) -> bool:
    """Load the project-level `.env` if present. Existing variables are not overridden."""
    dotenv_path = _find_project_root(start) / ".env"
    if dotenv_path.exists():
        return load_dotenv(dotenv_path=dotenv_path, override=False)
    return False


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable ("1", "true", "yes", "on")."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
