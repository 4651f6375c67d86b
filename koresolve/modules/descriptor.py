"""Module descriptor readers.

A module descriptor is the file at a project root that declares the
project's canonical module path. The default reader understands Go's
``go.mod``; other readers only need to implement ``ModuleDescriptorReader``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from koresolve.errors import ConfigError

logger = logging.getLogger(__name__)

GO_MOD_FILENAME = "go.mod"

# module example.com/app | module "example.com/app" | module `example.com/app`
MODULE_DIRECTIVE = re.compile(r"""^module\s+(?:"([^"]+)"|`([^`]+)`|([^\s(]\S*))\s*$""")


@runtime_checkable
class ModuleDescriptorReader(Protocol):
    """Reads the module path declared in a directory's module descriptor."""

    descriptor_name: str

    def read_module_path(self, directory: Path) -> str:
        """Return the module path declared in ``directory``.

        Raises:
            ConfigError: If no descriptor is present or it declares no module.
        """
        ...


def parse_module_directive(content: str) -> str | None:
    """Extract the module path from go.mod content.

    Args:
        content: Text of a go.mod file.

    Returns:
        The declared module path, or None if there is no module directive.
    """
    for raw_line in content.splitlines():
        line = raw_line.split("//", 1)[0].strip()
        if not line:
            continue
        match = MODULE_DIRECTIVE.match(line)
        if match:
            return next(group for group in match.groups() if group)
    return None


class GoModReader:
    """Reads module paths from go.mod files."""

    descriptor_name = GO_MOD_FILENAME

    def read_module_path(self, directory: Path) -> str:
        go_mod = directory / self.descriptor_name
        try:
            content = go_mod.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigError(
                f"No {self.descriptor_name} found in {directory}",
                code="module_not_found",
            ) from e
        except OSError as e:
            raise ConfigError(f"Cannot read {go_mod}: {e}") from e

        module_path = parse_module_directive(content)
        if not module_path:
            raise ConfigError(f"{go_mod} has no module directive")

        logger.debug("Read module path %s from %s", module_path, go_mod)
        return module_path


__all__ = [
    "GO_MOD_FILENAME",
    "GoModReader",
    "ModuleDescriptorReader",
    "parse_module_directive",
]
