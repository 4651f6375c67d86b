"""Container image reference parsing.

References follow the ``[registry/]repository[:tag][@digest]`` grammar.
Docker Hub short names are normalized the same way the docker CLI does
(``alpine`` → ``index.docker.io/library/alpine:latest``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from koresolve.errors import InvalidReferenceError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# Registry hosts that refer to Docker Hub
DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})

PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")
SHA256_HEX = re.compile(r"^[a-f0-9]{64}$")


def validate_digest(digest: str, reference: str | None = None) -> str:
    """Validate a content digest (``algorithm:hex``).

    Raises:
        InvalidReferenceError: If the digest is malformed.
    """
    if not DIGEST_PATTERN.match(digest):
        raise InvalidReferenceError(reference or digest, f"malformed digest {digest!r}")
    algorithm, _, encoded = digest.partition(":")
    if algorithm == "sha256" and not SHA256_HEX.match(encoded):
        raise InvalidReferenceError(
            reference or digest, "sha256 digest must be 64 lowercase hex characters"
        )
    return digest


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference.

    Attributes:
        registry: Registry host (and port).
        repository: Repository path within the registry.
        tag: Tag, if the reference names one.
        digest: Content digest, if the reference is pinned.
    """

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @property
    def name(self) -> str:
        """Registry and repository, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The manifest identifier to request: digest if pinned, else tag."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def pinned(self) -> bool:
        return self.digest is not None

    def with_digest(self, digest: str) -> ImageReference:
        """Return the ``name@digest`` form of this reference."""
        return replace(self, tag=None, digest=validate_digest(digest, str(self)))

    def __str__(self) -> str:
        result = self.name
        if self.tag:
            result += f":{self.tag}"
        if self.digest:
            result += f"@{self.digest}"
        return result


def parse_reference(reference: str) -> ImageReference:
    """Parse and normalize an image reference string.

    Args:
        reference: Reference such as ``gcr.io/distroless/static:nonroot``.

    Returns:
        Normalized ImageReference; tag defaults to ``latest`` when the
        reference carries neither tag nor digest.

    Raises:
        InvalidReferenceError: If the reference is malformed.
    """
    if not reference or reference != reference.strip() or any(c.isspace() for c in reference):
        raise InvalidReferenceError(reference, "must be non-empty and contain no whitespace")

    remainder, _, digest = reference.partition("@")
    if digest:
        validate_digest(digest, reference)
    elif reference.endswith("@"):
        raise InvalidReferenceError(reference, "empty digest")

    tag: str | None = None
    last_slash = remainder.rfind("/")
    colon = remainder.rfind(":")
    if colon > last_slash:
        remainder, tag = remainder[:colon], remainder[colon + 1 :]
        if not TAG_PATTERN.match(tag):
            raise InvalidReferenceError(reference, f"invalid tag {tag!r}")

    parts = remainder.split("/")
    if len(parts) > 1 and _looks_like_registry(parts[0]):
        registry, path = parts[0], parts[1:]
    else:
        registry, path = DEFAULT_REGISTRY, parts

    if registry in DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if len(path) == 1:
            path = ["library", *path]

    if not path or not all(PATH_COMPONENT.match(component) for component in path):
        raise InvalidReferenceError(
            reference, "repository must be lowercase alphanumeric path components"
        )

    if tag is None and not digest:
        tag = DEFAULT_TAG

    return ImageReference(
        registry=registry,
        repository="/".join(path),
        tag=tag,
        digest=digest or None,
    )


__all__ = [
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "ImageReference",
    "parse_reference",
    "validate_digest",
]
