"""neo4jctl package bootstrap.

Supervises a locally installed Neo4j server for development and test
automation. This module only exposes version metadata; the interesting parts
live in :mod:`neo4jctl.providers.java_instance` and :mod:`neo4jctl.conf_editor`.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
