"""Invocation-level orchestration.

This module provides the high-level API used by the CLI and build workers:
- load_targets(): read the project config and build the target map
- create_resolver(): construct a BaseImageResolver for one invocation
- resolve_all(): resolve base images for many targets concurrently
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from koresolve.config import Settings, get_settings
from koresolve.errors import KoResolveError
from koresolve.images.platform import normalize_platform_spec
from koresolve.images.registry import ImageIndex, RegistryClient
from koresolve.images.resolver import BaseImageResolver
from koresolve.modules.resolver import strip_scheme
from koresolve.targets.io import load_project_config
from koresolve.targets.registry import BuildTargetRegistry
from koresolve.targets.schema import ProjectConfig
from koresolve.types import ResolveStatus, TargetOutcome

logger = logging.getLogger(__name__)


@dataclass
class BuildOptions:
    """Per-invocation options.

    Attributes:
        working_directory: Directory build configs are relative to.
        base_image_override: Base image for every target, if set.
        platforms: Requested platforms; empty means the project default.
    """

    working_directory: Path = field(default_factory=Path.cwd)
    base_image_override: str | None = None
    platforms: tuple[str, ...] = ()


def effective_platform(options: BuildOptions, project: ProjectConfig) -> str:
    """Platform spec for an invocation: CLI > project default > linux/amd64."""
    return normalize_platform_spec(options.platforms or project.default_platforms)


def load_targets(
    options: BuildOptions,
    project: ProjectConfig | None = None,
) -> tuple[ProjectConfig, BuildTargetRegistry]:
    """Load the project config and build the target map.

    Raises:
        ConfigError: If the config is invalid or a target is outside a module.
        PathError: If a target location is missing or out of bounds.
        DuplicateTargetError: If two targets share an import path.
    """
    if project is None:
        project = load_project_config(options.working_directory)
    registry = BuildTargetRegistry(options.working_directory, project.builds)
    return project, registry


def create_resolver(
    client: RegistryClient,
    options: BuildOptions,
    project: ProjectConfig,
    settings: Settings | None = None,
) -> BaseImageResolver:
    """Create the base image resolver for one invocation."""
    if settings is None:
        settings = get_settings()
    return BaseImageResolver.from_settings(
        client,
        settings,
        default_base_image=project.default_base_image,
        base_image_overrides=project.base_image_overrides,
        base_image_override=options.base_image_override,
    )


def _resolve_one(
    resolver: BaseImageResolver,
    platform: str,
    import_path: str,
    timeout: float | None,
) -> TargetOutcome:
    try:
        reference, artifact = resolver.resolve(platform, import_path, timeout=timeout)
    except KoResolveError as e:
        logger.error("Base image for %s failed: %s", import_path, e)
        return TargetOutcome(
            import_path=import_path,
            status=ResolveStatus.FAILED,
            error_code=e.code,
            message=str(e),
        )

    details: dict[str, object] = {}
    if isinstance(artifact, ImageIndex):
        details["platforms"] = artifact.platforms()
    elif artifact.platform is not None:
        details["platform"] = str(artifact.platform)

    return TargetOutcome(
        import_path=import_path,
        status=ResolveStatus.SUCCEEDED,
        reference=reference,
        digest=artifact.digest,
        media_type=artifact.media_type,
        details=details,
    )


def resolve_all(
    resolver: BaseImageResolver,
    import_paths: Iterable[str],
    platform: str,
    settings: Settings | None = None,
) -> list[TargetOutcome]:
    """Resolve base images for many targets in parallel.

    Failures are reported per target; one target failing does not stop the
    others.

    Args:
        resolver: Shared resolver for the invocation.
        import_paths: Targets to resolve.
        platform: Platform spec passed to every resolution.
        settings: Application settings (concurrency and timeout).

    Returns:
        One outcome per target, in input order.
    """
    if settings is None:
        settings = get_settings()

    paths = [strip_scheme(path) for path in import_paths]
    if not paths:
        return []

    workers = min(settings.max_concurrent_resolves, len(paths))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="koresolve") as pool:
        futures = [
            pool.submit(_resolve_one, resolver, platform, path, settings.resolve_timeout)
            for path in paths
        ]
        outcomes = [future.result() for future in futures]

    failed = sum(1 for outcome in outcomes if not outcome.success)
    logger.info("Resolved %d base image(s), %d failed", len(outcomes) - failed, failed)
    return outcomes


__all__ = [
    "BuildOptions",
    "create_resolver",
    "effective_platform",
    "load_targets",
    "resolve_all",
]
