"""owehost package bootstrap.

The package hosts the filesystem-authoritative core of the OweHost control
plane: the tenant state store, the reconciler that drives OS resources from
it, and the recovery pipeline that reads it back.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0a0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
