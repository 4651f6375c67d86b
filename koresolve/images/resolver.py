"""Base image resolution.

This module handles:
- Choosing the base image reference for a target (ordered precedence)
- Pinning tag references to the digest they point at for the whole run
- Selecting the platform manifest from a multi-platform index
- Retrying transient registry failures with backoff
- Sharing one registry round-trip among concurrent callers per image
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, TypeVar

from koresolve.config import FALLBACK_BASE_IMAGE
from koresolve.errors import PlatformMismatchError, PlatformNotFoundError, ResolveTimeoutError
from koresolve.images.cache import SingleFlightCache
from koresolve.images.platform import parse_platform_spec
from koresolve.images.reference import ImageReference, parse_reference
from koresolve.images.registry import (
    Artifact,
    ImageIndex,
    RegistryClient,
    classify_registry_error,
)
from koresolve.modules.resolver import strip_scheme

if TYPE_CHECKING:
    from koresolve.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retries for transient registry failures
DEFAULT_RETRIES = 3

# Initial backoff between retries (seconds), doubled per attempt
DEFAULT_BACKOFF = 0.5


def _time_left(deadline: float | None, key: str, timeout: float | None) -> float | None:
    """Seconds left before ``deadline``, or None when there is no deadline."""
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ResolveTimeoutError(key, timeout or 0.0)
    return remaining


def select_platform(artifact: Artifact, platform_spec: str) -> Artifact:
    """Pick what a target builds on from a fetched artifact.

    Args:
        artifact: Image or index fetched from the registry.
        platform_spec: ``all`` or comma-separated platforms.

    Returns:
        The index itself for ``all`` or several platforms, the matching
        child for a single platform, or the image itself.

    Raises:
        PlatformNotFoundError: If a requested platform is missing from an index.
        PlatformMismatchError: If a single-platform image does not match.
    """
    requested = parse_platform_spec(platform_spec)
    if requested is None:
        return artifact

    if isinstance(artifact, ImageIndex):
        selected = []
        for platform in requested:
            child = artifact.find(platform)
            if child is None:
                raise PlatformNotFoundError(artifact.reference, str(platform), artifact.platforms())
            selected.append(child)
        if len(selected) == 1:
            return selected[0]
        return artifact

    if artifact.platform is not None:
        for platform in requested:
            if not platform.matches(artifact.platform):
                raise PlatformMismatchError(artifact.reference, str(platform), str(artifact.platform))
    return artifact


class BaseImageResolver:
    """Resolves the base image for build targets.

    One resolver is created per invocation and shared by all build workers;
    it is safe to call ``resolve`` from many threads at once.

    Reference precedence, highest first:

    1. ``base_image_override`` (applies to every target)
    2. ``base_image_overrides[import_path]``
    3. ``default_base_image``
    4. ``FALLBACK_BASE_IMAGE``
    """

    def __init__(
        self,
        client: RegistryClient,
        default_base_image: str | None = None,
        base_image_overrides: Mapping[str, str] | None = None,
        base_image_override: str | None = None,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.default_base_image = default_base_image
        self.base_image_overrides = {
            strip_scheme(path): ref for path, ref in (base_image_overrides or {}).items()
        }
        self.base_image_override = base_image_override
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        self._pins: SingleFlightCache[ImageReference] = SingleFlightCache("pins")
        self._artifacts: SingleFlightCache[Artifact] = SingleFlightCache("artifacts")
        self._results: SingleFlightCache[tuple[str, Artifact]] = SingleFlightCache("base images")

    @classmethod
    def from_settings(
        cls,
        client: RegistryClient,
        settings: Settings,
        default_base_image: str | None = None,
        base_image_overrides: Mapping[str, str] | None = None,
        base_image_override: str | None = None,
    ) -> BaseImageResolver:
        """Create a resolver using retry settings and the env default image."""
        return cls(
            client,
            default_base_image=default_base_image or settings.default_base_image,
            base_image_overrides=base_image_overrides,
            base_image_override=base_image_override,
            retries=settings.registry_retries,
            backoff=settings.registry_backoff,
        )

    def select_reference(self, import_path: str) -> tuple[ImageReference, str]:
        """Choose the unpinned base image reference for a target.

        Returns:
            Tuple of (parsed reference, name of the source it came from).

        Raises:
            InvalidReferenceError: If the chosen reference is malformed.
        """
        candidates = (
            ("build option", self.base_image_override),
            ("base image override", self.base_image_overrides.get(strip_scheme(import_path))),
            ("default base image", self.default_base_image),
        )
        for source, ref in candidates:
            if ref:
                return parse_reference(ref), source
        return parse_reference(FALLBACK_BASE_IMAGE), "built-in default"

    def _call_registry(self, operation: Callable[[str], T], ref: str, what: str) -> T:
        attempt = 0
        while True:
            try:
                return operation(ref)
            except Exception as e:
                error = classify_registry_error(e, ref)
                retryable = getattr(error, "retryable", False)
                if not retryable or attempt >= self.retries:
                    if error is e:
                        raise
                    raise error from e
                delay = self.backoff * (2**attempt)
                attempt += 1
                logger.warning(
                    "Transient error during %s of %s (attempt %d/%d), retrying in %.1fs: %s",
                    what,
                    ref,
                    attempt,
                    self.retries,
                    delay,
                    error,
                )
                self._sleep(delay)

    def pin(self, reference: ImageReference, timeout: float | None = None) -> ImageReference:
        """Return ``reference`` pinned to a digest.

        The first lookup of a tag fixes its digest for the life of the
        resolver, even if the tag moves on the registry afterwards.

        Raises:
            ResolveTimeoutError: If ``timeout`` expires while another caller
                looks up the same tag.
        """
        if reference.digest:
            return reference.with_digest(reference.digest)

        def lookup() -> ImageReference:
            digest = self._call_registry(self.client.digest, str(reference), "digest lookup")
            return reference.with_digest(digest)

        return self._pins.get_or_compute(str(reference), lookup, timeout=timeout)

    def _fetch(self, pinned: ImageReference, timeout: float | None = None) -> Artifact:
        return self._artifacts.get_or_compute(
            str(pinned),
            lambda: self._call_registry(self.client.fetch, str(pinned), "fetch"),
            timeout=timeout,
        )

    def resolve(
        self,
        platform: str,
        import_path: str,
        timeout: float | None = None,
    ) -> tuple[str, Artifact]:
        """Resolve the base image for one target.

        Args:
            platform: ``all`` or comma-separated platforms to build for.
            import_path: Target import path (``ko://`` prefix allowed).
            timeout: Seconds to wait in total on other callers resolving,
                pinning or fetching the same image (None = wait forever).

        Returns:
            Tuple of (pinned ``name@digest`` reference, image or index).

        Raises:
            InvalidReferenceError: If the chosen reference is malformed.
            RegistryError: If the registry lookup fails.
            PlatformNotFoundError: If the index lacks a requested platform.
            PlatformMismatchError: If a single-platform image does not match.
            ResolveTimeoutError: If ``timeout`` expires while waiting.
        """
        import_path = strip_scheme(import_path)
        reference, source = self.select_reference(import_path)
        logger.debug("Base image for %s from %s: %s", import_path, source, reference)

        deadline = None if timeout is None else time.monotonic() + timeout

        def compute() -> tuple[str, Artifact]:
            pinned = self.pin(reference, timeout=_time_left(deadline, str(reference), timeout))
            artifact = self._fetch(pinned, timeout=_time_left(deadline, str(pinned), timeout))
            return str(pinned), select_platform(artifact, platform)

        pinned_ref, artifact = self._results.get_or_compute(
            (str(reference), platform), compute, timeout=timeout
        )
        logger.info("Using base %s for %s", pinned_ref, import_path)
        return pinned_ref, artifact


__all__ = [
    "BaseImageResolver",
    "DEFAULT_BACKOFF",
    "DEFAULT_RETRIES",
    "select_platform",
]
