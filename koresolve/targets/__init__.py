"""Build target registry.

This module handles:
- Loading and validating the project config file
- Applying dir/main defaulting to each build config
- Building the collision-checked import path to build config map
"""

from koresolve.targets.io import CONFIG_FILENAME, load_project_config
from koresolve.targets.registry import BuildTargetRegistry, build_map
from koresolve.targets.schema import BuildConfig, ProjectConfig

__all__ = [
    "BuildConfig",
    "BuildTargetRegistry",
    "CONFIG_FILENAME",
    "ProjectConfig",
    "build_map",
    "load_project_config",
]
