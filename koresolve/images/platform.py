"""Platform parsing and matching.

Platforms are written ``os/architecture[/variant][:os_version]``, e.g.
``linux/arm64/v8`` or ``windows/amd64:10.0.17763.1879``. The special value
``all`` keeps a whole image index without choosing an architecture.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from koresolve.errors import ConfigError
from koresolve.types import ALL_PLATFORMS

DEFAULT_PLATFORM = "linux/amd64"

# Variants a registry may leave out of the platform object
IMPLIED_VARIANTS = {"arm64": "v8"}


@dataclass(frozen=True)
class Platform:
    """An (OS, architecture, variant) triple with optional OS version."""

    os: str
    architecture: str
    variant: str = ""
    os_version: str = ""

    @classmethod
    def parse(cls, value: str) -> Platform:
        """Parse ``os/arch[/variant][:os_version]``.

        Raises:
            ConfigError: If the value is not a platform.
        """
        spec, _, os_version = value.strip().partition(":")
        parts = spec.split("/")
        if len(parts) not in (2, 3) or not all(parts):
            raise ConfigError(
                f"Invalid platform {value!r}: expected os/arch[/variant][:osversion]",
                code="invalid_platform",
            )
        return cls(
            os=parts[0],
            architecture=parts[1],
            variant=parts[2] if len(parts) == 3 else "",
            os_version=os_version,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Platform:
        """Build a platform from an OCI platform object or image config."""
        return cls(
            os=data.get("os", ""),
            architecture=data.get("architecture", ""),
            variant=data.get("variant", "") or "",
            os_version=data.get("os.version", "") or "",
        )

    def _variant(self) -> str:
        return self.variant or IMPLIED_VARIANTS.get(self.architecture, "")

    def matches(self, candidate: Platform) -> bool:
        """Whether ``candidate`` satisfies this requested platform.

        OS and architecture must be equal. Variant and OS version only
        constrain the match when they are requested.
        """
        if self.os != candidate.os or self.architecture != candidate.architecture:
            return False
        if self.variant and self._variant() != candidate._variant():
            return False
        if self.os_version and self.os_version != candidate.os_version:
            return False
        return True

    def __str__(self) -> str:
        result = f"{self.os}/{self.architecture}"
        if self.variant:
            result += f"/{self.variant}"
        if self.os_version:
            result += f":{self.os_version}"
        return result


def parse_platform_spec(spec: str) -> list[Platform] | None:
    """Parse a comma-separated platform list.

    Args:
        spec: ``all`` or one or more platforms separated by commas.

    Returns:
        None for ``all``, otherwise the requested platforms in order.

    Raises:
        ConfigError: If no platform is listed or one is invalid.
    """
    entries = [entry.strip() for entry in spec.split(",") if entry.strip()]
    if not entries:
        raise ConfigError("No platform requested", code="invalid_platform")
    if ALL_PLATFORMS in entries:
        return None
    return [Platform.parse(entry) for entry in entries]


def normalize_platform_spec(platforms: list[str] | tuple[str, ...] | set[str]) -> str:
    """Collapse a set of requested platforms into a canonical spec string.

    ``all`` absorbs everything else; an empty set means the default platform.
    """
    entries = {entry.strip() for entry in platforms if entry and entry.strip()}
    if not entries:
        return DEFAULT_PLATFORM
    if ALL_PLATFORMS in entries:
        return ALL_PLATFORMS
    return ",".join(sorted(str(Platform.parse(entry)) for entry in entries))


__all__ = [
    "DEFAULT_PLATFORM",
    "Platform",
    "normalize_platform_spec",
    "parse_platform_spec",
]
