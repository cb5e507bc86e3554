# =============================================================================
# HireChat Main Package - Dynamic Version Loading
# =============================================================================
"""
HireChat - realtime messaging and notification core

Version is loaded dynamically from pyproject.toml via importlib.metadata.

Single Source of Truth: pyproject.toml [project] version
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import tomllib


def _get_version() -> str:
    """
    Get package version dynamically from installed metadata.

    Falls back to reading pyproject.toml if package not installed.

    Returns:
        Version string (e.g., "0.3.0")
    """
    try:
        return version("hirechat")
    except PackageNotFoundError:
        pass

    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            return data["project"]["version"]

    return "0.1.0-unknown"


__version__: str = _get_version()
__description__: str = "HireChat - realtime messaging and notification core"
__author__: str = "HireChat Team"

__all__ = [
    "__version__",
    "__description__",
    "__author__",
]
