"""Shared type definitions for koresolve.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum

# Sentinel platform meaning "keep the whole index, do not pick an architecture"
ALL_PLATFORMS = "all"

# Scheme prefix downstream stages put on import paths
KO_SCHEME = "ko://"


class EntryState(str, Enum):
    """State of a base image cache entry."""

    ABSENT = "absent"
    IN_FLIGHT = "in_flight"
    RESOLVED = "resolved"
    FAILED = "failed"


class ResolveStatus(str, Enum):
    """Outcome of resolving the base image for one target."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TargetOutcome:
    """Result of resolving the base image for a single build target."""

    import_path: str
    status: ResolveStatus
    reference: str | None = None
    digest: str | None = None
    media_type: str | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Whether the target resolved."""
        return self.status is ResolveStatus.SUCCEEDED


__all__ = [
    "ALL_PLATFORMS",
    "EntryState",
    "KO_SCHEME",
    "ResolveStatus",
    "TargetOutcome",
]
