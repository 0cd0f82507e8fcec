"""mariactl package bootstrap.

Exposes lightweight metadata used by the CLI and the packaging machinery.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: Hatch reads the version from this module (see ``pyproject.toml``).
__version__ = "0.1.0a0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
