"""Project configuration loading.

Reads ``.ko.yaml`` from the working directory, or the file or directory
named by ``KO_CONFIG_PATH``, and validates it into a ProjectConfig.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from koresolve.errors import ConfigError
from koresolve.targets.schema import ProjectConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".ko.yaml"
CONFIG_PATH_ENV = "KO_CONFIG_PATH"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def find_config_file(working_directory: Path) -> Path | None:
    """Locate the project config file.

    ``KO_CONFIG_PATH`` wins over the working directory; it may name the file
    itself or a directory containing ``.ko.yaml``.

    Returns:
        Path to the config file, or None when there is none.

    Raises:
        ConfigError: If ``KO_CONFIG_PATH`` points at something missing.
    """
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        candidate = Path(override)
        if candidate.is_dir():
            candidate = candidate / CONFIG_FILENAME
        if not candidate.is_file():
            raise ConfigError(f"{CONFIG_PATH_ENV}={override} does not name a config file")
        return candidate

    candidate = working_directory / CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def parse_project_config(data: dict[str, Any], source: str = "<memory>") -> ProjectConfig:
    """Validate raw config data.

    Raises:
        ConfigError: If the data does not match the schema.
    """
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid project config {source}: {e}") from e


def load_project_config(working_directory: Path) -> ProjectConfig:
    """Load the project config for a working directory.

    A missing config file yields an empty ProjectConfig.

    Args:
        working_directory: Directory the invocation runs in.

    Returns:
        Validated ProjectConfig.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    path = find_config_file(working_directory)
    if path is None:
        logger.debug("No %s in %s, using defaults", CONFIG_FILENAME, working_directory)
        return ProjectConfig()

    logger.debug("Loading project config from %s", path)
    try:
        data = load_yaml(path)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Cannot read project config {path}: {e}") from e
    return parse_project_config(data, source=str(path))


__all__ = [
    "CONFIG_FILENAME",
    "CONFIG_PATH_ENV",
    "find_config_file",
    "load_project_config",
    "load_yaml",
    "parse_project_config",
]
