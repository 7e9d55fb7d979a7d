"""Provider interfaces for neo4jctl."""
from __future__ import annotations

from .java_instance import (
    InvalidTransitionError,
    JavaInstanceProvider,
    ServerExitedError,
    StartCancelledError,
    Status,
    StopCancelledError,
    SupervisorError,
)

__all__ = [
    "InvalidTransitionError",
    "JavaInstanceProvider",
    "ServerExitedError",
    "StartCancelledError",
    "Status",
    "StopCancelledError",
    "SupervisorError",
]
