"""Registry client for base image lookups.

This module handles:
- The RegistryClient protocol the resolver depends on
- Image descriptor and index models
- Classifying transport failures into RegistryError kinds
- An httpx implementation of the OCI distribution API (digest lookup,
  manifest/index fetch, config blob fetch, anonymous bearer tokens)
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from koresolve.errors import KoResolveError, RegistryError, RegistryErrorKind
from koresolve.images.platform import Platform
from koresolve.images.reference import ImageReference, parse_reference

logger = logging.getLogger(__name__)

MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

INDEX_MEDIA_TYPES = frozenset({MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_MANIFEST_LIST})

MANIFEST_ACCEPT = ", ".join(
    [
        MEDIA_TYPE_OCI_INDEX,
        MEDIA_TYPE_DOCKER_MANIFEST_LIST,
        MEDIA_TYPE_OCI_MANIFEST,
        MEDIA_TYPE_DOCKER_MANIFEST,
    ]
)

DIGEST_HEADER = "Docker-Content-Digest"

# Timeout for registry requests (seconds)
REQUEST_TIMEOUT = 30.0

CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class ImageDescriptor:
    """A single-platform image manifest (or an index entry pointing at one).

    Attributes:
        reference: Pinned ``name@digest`` reference.
        digest: Manifest digest.
        media_type: Manifest media type.
        size: Manifest size in bytes (0 if unknown).
        platform: Platform the image is built for, if known.
        manifest: Raw manifest, when it was fetched.
    """

    reference: str
    digest: str
    media_type: str
    size: int = 0
    platform: Platform | None = None
    manifest: dict[str, Any] | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ImageIndex:
    """A multi-platform image index.

    Attributes:
        reference: Pinned ``name@digest`` reference.
        digest: Index digest.
        media_type: Index media type.
        manifests: Child descriptors, one per platform.
        size: Index size in bytes (0 if unknown).
    """

    reference: str
    digest: str
    media_type: str
    manifests: tuple[ImageDescriptor, ...] = ()
    size: int = 0

    def platforms(self) -> list[str]:
        """Platforms listed in the index, in index order."""
        return [str(m.platform) for m in self.manifests if m.platform is not None]

    def find(self, platform: Platform) -> ImageDescriptor | None:
        """Return the first child matching ``platform``."""
        for child in self.manifests:
            if child.platform is not None and platform.matches(child.platform):
                return child
        return None


Artifact = ImageDescriptor | ImageIndex


@runtime_checkable
class RegistryClient(Protocol):
    """Remote registry operations the resolver needs."""

    def digest(self, ref: str) -> str:
        """Return the current manifest digest for ``ref``."""
        ...

    def fetch(self, ref: str) -> Artifact:
        """Fetch the manifest or index ``ref`` points at."""
        ...


def classify_status(status_code: int) -> RegistryErrorKind:
    """Map an HTTP status to a registry failure kind."""
    if status_code == 404:
        return RegistryErrorKind.NOT_FOUND
    if status_code in (401, 403):
        return RegistryErrorKind.AUTH
    if status_code == 429 or status_code >= 500:
        return RegistryErrorKind.TRANSIENT
    return RegistryErrorKind.REJECTED


def classify_registry_error(error: Exception, ref: str) -> KoResolveError:
    """Translate a collaborator failure into a koresolve error.

    Errors that are already koresolve errors pass through unchanged.

    Args:
        error: The exception raised by a registry client.
        ref: Reference that was being looked up.

    Returns:
        The classified error (not raised).
    """
    if isinstance(error, KoResolveError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return RegistryError(
            f"Registry returned {status} for {ref}",
            kind=classify_status(status),
            status_code=status,
        )
    if isinstance(error, httpx.TimeoutException):
        return RegistryError(f"Timeout talking to registry for {ref}", RegistryErrorKind.TRANSIENT)
    if isinstance(error, httpx.HTTPError):
        return RegistryError(
            f"Network error talking to registry for {ref}: {error}",
            RegistryErrorKind.TRANSIENT,
        )
    if isinstance(error, (LookupError, FileNotFoundError)):
        return RegistryError(f"{ref} not found: {error}", RegistryErrorKind.NOT_FOUND)
    if isinstance(error, PermissionError):
        return RegistryError(f"Access denied to {ref}: {error}", RegistryErrorKind.AUTH)
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return RegistryError(
            f"Registry unavailable for {ref}: {error}", RegistryErrorKind.TRANSIENT
        )
    return RegistryError(f"Registry lookup failed for {ref}: {error}", RegistryErrorKind.TRANSIENT)


def parse_bearer_challenge(header: str) -> dict[str, str] | None:
    """Parse a ``WWW-Authenticate: Bearer ...`` challenge.

    Returns:
        Challenge parameters (realm, service, scope), or None if the
        challenge is not a bearer challenge.
    """
    scheme, _, params = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return dict(CHALLENGE_PARAM.findall(params))


def _sha256_digest(content: bytes) -> str:
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


class HttpRegistryClient:
    """RegistryClient over the OCI distribution HTTP API.

    Only anonymous access is supported: bearer challenges are answered by
    requesting a pull token without credentials.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = REQUEST_TIMEOUT,
        insecure_registries: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._manage_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self.timeout = timeout
        self.insecure_registries = frozenset(insecure_registries)
        self._tokens: dict[tuple[str, str], str] = {}
        self._tokens_lock = threading.Lock()

    def __enter__(self) -> HttpRegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._manage_client:
            self._client.close()

    def _base_url(self, reference: ImageReference) -> str:
        host = reference.registry.split(":", 1)[0]
        insecure = reference.registry in self.insecure_registries or host in (
            "localhost",
            "127.0.0.1",
        )
        scheme = "http" if insecure else "https"
        return f"{scheme}://{reference.registry}/v2/{reference.repository}"

    def _fetch_token(self, challenge: str, reference: ImageReference) -> str | None:
        params = parse_bearer_challenge(challenge)
        if not params or "realm" not in params:
            return None

        query = {"scope": params.get("scope") or f"repository:{reference.repository}:pull"}
        if "service" in params:
            query["service"] = params["service"]

        logger.debug("Requesting anonymous token from %s for %s", params["realm"], reference.name)
        response = self._client.get(params["realm"], params=query, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        token = data.get("token") or data.get("access_token")
        return token or None

    def _request(
        self,
        method: str,
        url: str,
        reference: ImageReference,
        accept: str | None = None,
    ) -> httpx.Response:
        token_key = (reference.registry, reference.repository)
        headers: dict[str, str] = {}
        if accept:
            headers["Accept"] = accept

        try:
            with self._tokens_lock:
                token = self._tokens.get(token_key)
            if token:
                headers["Authorization"] = f"Bearer {token}"

            response = self._client.request(method, url, headers=headers, timeout=self.timeout)

            if response.status_code == 401:
                if token is not None:
                    # Expired or revoked: answer the challenge once more
                    logger.debug("Token for %s was rejected, requesting a new one", reference.name)
                    with self._tokens_lock:
                        if self._tokens.get(token_key) == token:
                            del self._tokens[token_key]
                    headers.pop("Authorization", None)
                token = self._fetch_token(response.headers.get("WWW-Authenticate", ""), reference)
                if token:
                    with self._tokens_lock:
                        self._tokens[token_key] = token
                    headers["Authorization"] = f"Bearer {token}"
                    response = self._client.request(
                        method, url, headers=headers, timeout=self.timeout
                    )

            response.raise_for_status()
            return response

        except httpx.HTTPError as e:
            raise classify_registry_error(e, str(reference)) from e

    def digest(self, ref: str) -> str:
        """Look up the current manifest digest for ``ref``.

        Uses a HEAD request and falls back to GET when the registry omits
        the digest header.
        """
        reference = parse_reference(ref)
        url = f"{self._base_url(reference)}/manifests/{reference.identifier}"

        response = self._request("HEAD", url, reference, accept=MANIFEST_ACCEPT)
        digest = response.headers.get(DIGEST_HEADER)
        if digest:
            logger.debug("Digest for %s is %s", ref, digest)
            return digest

        logger.debug("No %s header for %s, falling back to GET", DIGEST_HEADER, ref)
        response = self._request("GET", url, reference, accept=MANIFEST_ACCEPT)
        return response.headers.get(DIGEST_HEADER) or _sha256_digest(response.content)

    def _config_platform(self, reference: ImageReference, config_digest: str) -> Platform | None:
        url = f"{self._base_url(reference)}/blobs/{config_digest}"
        response = self._request("GET", url, reference)
        try:
            config = response.json()
        except ValueError:
            logger.warning("Config blob %s of %s is not JSON", config_digest, reference)
            return None
        if not isinstance(config, dict) or not config.get("architecture"):
            return None
        return Platform.from_dict(config)

    def fetch(self, ref: str) -> Artifact:
        """Fetch the manifest or index for ``ref``.

        Raises:
            RegistryError: On HTTP failures or a digest mismatch.
        """
        reference = parse_reference(ref)
        url = f"{self._base_url(reference)}/manifests/{reference.identifier}"
        response = self._request("GET", url, reference, accept=MANIFEST_ACCEPT)

        computed = _sha256_digest(response.content)
        if reference.digest and reference.digest.startswith("sha256:") and reference.digest != computed:
            raise RegistryError(
                f"Digest mismatch for {ref}: registry content hashes to {computed}",
                RegistryErrorKind.TRANSIENT,
            )
        digest = reference.digest or response.headers.get(DIGEST_HEADER) or computed

        try:
            manifest = response.json()
        except ValueError as e:
            raise RegistryError(
                f"Manifest for {ref} is not valid JSON", RegistryErrorKind.TRANSIENT
            ) from e
        if not isinstance(manifest, dict):
            raise RegistryError(f"Manifest for {ref} is not an object", RegistryErrorKind.TRANSIENT)

        content_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
        media_type = manifest.get("mediaType") or content_type
        pinned = str(reference.with_digest(digest))

        if media_type in INDEX_MEDIA_TYPES or "manifests" in manifest:
            children = tuple(
                ImageDescriptor(
                    reference=f"{reference.name}@{entry['digest']}",
                    digest=entry["digest"],
                    media_type=entry.get("mediaType", ""),
                    size=entry.get("size", 0),
                    platform=Platform.from_dict(entry["platform"]) if entry.get("platform") else None,
                )
                for entry in manifest.get("manifests", [])
            )
            logger.debug("Fetched index %s with %d manifests", pinned, len(children))
            return ImageIndex(
                reference=pinned,
                digest=digest,
                media_type=media_type,
                manifests=children,
                size=len(response.content),
            )

        platform: Platform | None = None
        config_digest = (manifest.get("config") or {}).get("digest")
        if config_digest:
            platform = self._config_platform(reference, config_digest)

        logger.debug("Fetched manifest %s (platform %s)", pinned, platform)
        return ImageDescriptor(
            reference=pinned,
            digest=digest,
            media_type=media_type,
            size=len(response.content),
            platform=platform,
            manifest=manifest,
        )


__all__ = [
    "Artifact",
    "HttpRegistryClient",
    "INDEX_MEDIA_TYPES",
    "ImageDescriptor",
    "ImageIndex",
    "MANIFEST_ACCEPT",
    "MEDIA_TYPE_DOCKER_MANIFEST",
    "MEDIA_TYPE_DOCKER_MANIFEST_LIST",
    "MEDIA_TYPE_OCI_INDEX",
    "MEDIA_TYPE_OCI_MANIFEST",
    "RegistryClient",
    "classify_registry_error",
    "classify_status",
    "parse_bearer_challenge",
]
