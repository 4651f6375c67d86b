"""Build target map construction.

Maps every declared build config to the import path of the package it
builds. The map is built in a single pass and is read-only afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

from koresolve.errors import DuplicateTargetError
from koresolve.modules.resolver import ModuleResolver, locate_package_dir
from koresolve.targets.schema import BuildConfig

logger = logging.getLogger(__name__)


def build_map(
    root_dir: Path,
    configs: Iterable[BuildConfig],
    module_resolver: ModuleResolver | None = None,
) -> Mapping[str, BuildConfig]:
    """Build the map from import path to build config.

    Each config's location is ``root_dir`` joined with its ``dir`` and then
    its ``main`` (a file stands for its directory). The import path comes
    from the module enclosing that location, so a ``dir`` may point into a
    nested module.

    Args:
        root_dir: Working directory configs are relative to.
        configs: Build configs in declaration order.
        module_resolver: Resolver to reuse (a fresh one by default).

    Returns:
        Read-only mapping of import path to BuildConfig.

    Raises:
        ConfigError: If a location is not inside any module.
        PathError: If a location is missing or outside ``root_dir``.
        DuplicateTargetError: If two configs resolve to the same import path.
    """
    resolver = module_resolver or ModuleResolver()
    resolved: dict[str, BuildConfig] = {}
    labels: dict[str, str] = {}

    for index, config in enumerate(configs):
        package_dir = locate_package_dir(root_dir, config.dir, config.main)
        import_path = resolver.import_path_for(package_dir)
        label = config.label(index)

        if import_path in resolved:
            raise DuplicateTargetError(import_path, labels[import_path], label)

        logger.debug("Build %s resolves to %s", label, import_path)
        resolved[import_path] = config
        labels[import_path] = label

    return MappingProxyType(resolved)


class BuildTargetRegistry:
    """Holds the resolved target map for one invocation."""

    def __init__(
        self,
        root_dir: Path,
        configs: Iterable[BuildConfig],
        module_resolver: ModuleResolver | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.module_resolver = module_resolver or ModuleResolver()
        self.targets = build_map(root_dir, configs, self.module_resolver)
        logger.info("Resolved %d build target(s) in %s", len(self.targets), root_dir)

    def __contains__(self, import_path: object) -> bool:
        return import_path in self.targets

    def __iter__(self):
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)

    def get(self, import_path: str) -> BuildConfig | None:
        return self.targets.get(import_path)


__all__ = ["BuildTargetRegistry", "build_map"]
