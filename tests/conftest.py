"""Shared fixtures for koresolve tests."""

import hashlib
import threading
from pathlib import Path

import pytest

from koresolve.errors import RegistryError, RegistryErrorKind
from koresolve.images.platform import Platform
from koresolve.images.reference import parse_reference
from koresolve.images.registry import (
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_OCI_MANIFEST,
    ImageDescriptor,
    ImageIndex,
)

KO_MODULE = "github.com/google/ko"


def make_digest(seed: str) -> str:
    """Return a valid sha256 digest derived from ``seed``."""
    return f"sha256:{hashlib.sha256(seed.encode()).hexdigest()}"


class FakeRegistryClient:
    """In-memory RegistryClient that counts calls.

    ``tags`` maps a tag reference (``name:tag``) to a digest; ``artifacts``
    maps a digest to what ``fetch`` returns for ``name@digest``.
    """

    def __init__(self, delay: threading.Event | None = None) -> None:
        self.tags: dict[str, str] = {}
        self.artifacts: dict[str, ImageDescriptor | ImageIndex] = {}
        self.digest_calls: list[str] = []
        self.fetch_calls: list[str] = []
        self.failures: list[Exception] = []
        self.delay = delay
        self._lock = threading.Lock()

    def add_image(self, ref: str, platform: str | None = "linux/amd64", seed: str | None = None) -> str:
        """Register a single-platform image under a tag reference."""
        reference = parse_reference(ref)
        digest = make_digest(seed or ref)
        self.tags[str(reference)] = digest
        self.artifacts[digest] = ImageDescriptor(
            reference=f"{reference.name}@{digest}",
            digest=digest,
            media_type=MEDIA_TYPE_OCI_MANIFEST,
            platform=Platform.parse(platform) if platform else None,
        )
        return digest

    def add_index(self, ref: str, platforms: list[str], seed: str | None = None) -> str:
        """Register a multi-platform index under a tag reference."""
        reference = parse_reference(ref)
        digest = make_digest(seed or ref)
        children = tuple(
            ImageDescriptor(
                reference=f"{reference.name}@{make_digest(ref + p)}",
                digest=make_digest(ref + p),
                media_type=MEDIA_TYPE_OCI_MANIFEST,
                platform=Platform.parse(p),
            )
            for p in platforms
        )
        self.tags[str(reference)] = digest
        self.artifacts[digest] = ImageIndex(
            reference=f"{reference.name}@{digest}",
            digest=digest,
            media_type=MEDIA_TYPE_OCI_INDEX,
            manifests=children,
        )
        return digest

    def _maybe_fail(self) -> None:
        if self.delay is not None:
            self.delay.wait(timeout=5)
        with self._lock:
            if self.failures:
                raise self.failures.pop(0)

    def digest(self, ref: str) -> str:
        with self._lock:
            self.digest_calls.append(ref)
        self._maybe_fail()
        reference = parse_reference(ref)
        if str(reference) not in self.tags:
            raise RegistryError(f"{ref} not found", RegistryErrorKind.NOT_FOUND, 404)
        return self.tags[str(reference)]

    def fetch(self, ref: str) -> ImageDescriptor | ImageIndex:
        with self._lock:
            self.fetch_calls.append(ref)
        self._maybe_fail()
        reference = parse_reference(ref)
        if reference.digest is None:
            reference = reference.with_digest(self.tags[str(reference)])
        if reference.digest not in self.artifacts:
            raise RegistryError(f"{ref} not found", RegistryErrorKind.NOT_FOUND, 404)
        return self.artifacts[reference.digest]


@pytest.fixture
def fake_registry() -> FakeRegistryClient:
    """Create an empty fake registry client."""
    return FakeRegistryClient()


@pytest.fixture
def ko_module(tmp_path: Path) -> Path:
    """Create a module ``github.com/google/ko`` with a ``test`` package."""
    root = tmp_path / "ko"
    (root / "test").mkdir(parents=True)
    (root / "go.mod").write_text(f"module {KO_MODULE}\n\ngo 1.21\n")
    (root / "main.go").write_text("package main\n")
    (root / "test" / "main.go").write_text("package main\n")
    (root / "cmd" / "app").mkdir(parents=True)
    (root / "cmd" / "app" / "main.go").write_text("package main\n")
    return root
