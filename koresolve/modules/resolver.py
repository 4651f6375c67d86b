"""Module identity and import path resolution.

This module handles:
- Locating the module descriptor for a directory (walking upward)
- Normalizing a dir/main pair to a package directory
- Joining a package directory onto its module path to form an import path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from koresolve.errors import ConfigError, PathError
from koresolve.modules.descriptor import GoModReader, ModuleDescriptorReader
from koresolve.types import KO_SCHEME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Module:
    """A project module.

    Attributes:
        root_dir: Directory containing the module descriptor.
        module_path: Canonical identity string of the module.
    """

    root_dir: Path
    module_path: str


def strip_scheme(import_path: str) -> str:
    """Remove the ``ko://`` scheme from an import path, if present."""
    if import_path.startswith(KO_SCHEME):
        return import_path[len(KO_SCHEME) :]
    return import_path


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def locate_package_dir(root_dir: Path, dir: str = "", main: str = "") -> Path:
    """Resolve a dir/main pair to an existing package directory.

    ``dir`` is joined onto ``root_dir`` first, then ``main`` onto the result.
    When ``main`` names a file its containing directory is used.

    Args:
        root_dir: Directory the pair is relative to.
        dir: Optional directory relative to ``root_dir``.
        main: Optional entrypoint file or directory relative to ``dir``.

    Returns:
        Absolute, symlink-resolved package directory.

    Raises:
        PathError: If the location is missing or lies outside ``root_dir``.
    """
    root = root_dir.resolve()
    location = root
    if dir:
        location = location / dir
    if main:
        location = location / main

    if not location.exists():
        raise PathError(str(location), "Build location does not exist")

    location = location.resolve()
    if location.is_file():
        location = location.parent

    if not _is_within(location, root):
        raise PathError(str(location), f"Build location is outside {root}")

    return location


def resolve_import_path(
    module_path: str,
    root_dir: Path,
    dir: str = "",
    main: str = "",
) -> str:
    """Compute the import path of a package inside a module.

    Args:
        module_path: Module path declared by the module rooted at ``root_dir``.
        root_dir: Module root directory.
        dir: Optional directory relative to ``root_dir``.
        main: Optional entrypoint file or directory relative to ``dir``.

    Returns:
        Import path, e.g. ``github.com/google/ko/cmd/app``.

    Raises:
        PathError: If the location is missing or lies outside ``root_dir``.
    """
    location = locate_package_dir(root_dir, dir, main)
    relative = location.relative_to(root_dir.resolve())
    if not relative.parts:
        return module_path
    return str(PurePosixPath(module_path, *relative.parts))


class ModuleResolver:
    """Identifies modules and computes import paths.

    Module paths are read once per directory and kept for the lifetime of the
    resolver.
    """

    def __init__(self, reader: ModuleDescriptorReader | None = None) -> None:
        self.reader: ModuleDescriptorReader = reader or GoModReader()
        self._modules: dict[Path, Module] = {}

    def identify(self, root_dir: Path) -> Module:
        """Find the module that contains ``root_dir``.

        Walks from ``root_dir`` upward until a directory holding the module
        descriptor is found.

        Args:
            root_dir: Directory (or file) inside the module.

        Returns:
            The enclosing Module.

        Raises:
            ConfigError: If no module descriptor is found.
        """
        start = root_dir.resolve()
        if start.is_file():
            start = start.parent

        for candidate in (start, *start.parents):
            cached = self._modules.get(candidate)
            if cached is not None:
                return cached
            if (candidate / self.reader.descriptor_name).is_file():
                module = Module(
                    root_dir=candidate,
                    module_path=self.reader.read_module_path(candidate),
                )
                self._modules[candidate] = module
                logger.debug("Identified module %s at %s", module.module_path, candidate)
                return module

        raise ConfigError(
            f"No {self.reader.descriptor_name} found in {start} or any parent directory",
            code="module_not_found",
        )

    def import_path_for(self, package_dir: Path) -> str:
        """Compute the import path of an existing package directory."""
        module = self.identify(package_dir)
        relative = package_dir.resolve().relative_to(module.root_dir)
        return resolve_import_path(module.module_path, module.root_dir, relative.as_posix())


__all__ = [
    "Module",
    "ModuleResolver",
    "locate_package_dir",
    "resolve_import_path",
    "strip_scheme",
]
