"""Tests for base image resolution."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from koresolve.config import FALLBACK_BASE_IMAGE, Settings
from koresolve.errors import (
    InvalidReferenceError,
    PlatformMismatchError,
    PlatformNotFoundError,
    RegistryError,
    RegistryErrorKind,
    ResolveTimeoutError,
)
from koresolve.images.registry import ImageDescriptor, ImageIndex
from koresolve.images.resolver import BaseImageResolver, select_platform

from conftest import FakeRegistryClient, make_digest

BASE = "registry.example.com/base:latest"
OTHER = "registry.example.com/other:1.0"


def transient(status: int = 503) -> RegistryError:
    return RegistryError("unavailable", RegistryErrorKind.TRANSIENT, status)


class TestSelectReference:
    """Tests for reference precedence."""

    def test_build_option_wins(self, fake_registry):
        """The build option should apply to every target."""
        resolver = BaseImageResolver(
            fake_registry,
            default_base_image=BASE,
            base_image_overrides={"example.com/app": OTHER},
            base_image_override="registry.example.com/forced",
        )
        ref, source = resolver.select_reference("example.com/app")
        assert str(ref) == "registry.example.com/forced:latest"
        assert source == "build option"

    def test_per_target_override(self, fake_registry):
        """A per-target override should beat the default."""
        resolver = BaseImageResolver(
            fake_registry,
            default_base_image=BASE,
            base_image_overrides={"ko://example.com/app": OTHER},
        )
        assert str(resolver.select_reference("example.com/app")[0]) == OTHER
        assert str(resolver.select_reference("ko://example.com/app")[0]) == OTHER
        assert str(resolver.select_reference("example.com/lib")[0]) == BASE

    def test_fallback(self, fake_registry):
        """With nothing configured the built-in default should be used."""
        ref, source = BaseImageResolver(fake_registry).select_reference("example.com/app")
        assert str(ref) == FALLBACK_BASE_IMAGE
        assert source == "built-in default"

    def test_from_settings_uses_env_default(self, fake_registry):
        """The environment default should apply when the project sets none."""
        settings = Settings(default_base_image=OTHER, registry_retries=1, registry_backoff=0.1)
        resolver = BaseImageResolver.from_settings(fake_registry, settings)
        assert resolver.default_base_image == OTHER
        assert resolver.retries == 1
        assert resolver.backoff == 0.1

    def test_from_settings_project_default_wins(self, fake_registry):
        """The project default should beat the environment default."""
        settings = Settings(default_base_image=OTHER)
        resolver = BaseImageResolver.from_settings(fake_registry, settings, default_base_image=BASE)
        assert resolver.default_base_image == BASE


class TestSelectPlatform:
    """Tests for select_platform function."""

    def _index(self, fake_registry) -> ImageIndex:
        digest = fake_registry.add_index(BASE, ["linux/amd64", "linux/arm64", "linux/arm/v7"])
        return fake_registry.artifacts[digest]

    def test_all_returns_index(self, fake_registry):
        """'all' should keep the whole index."""
        index = self._index(fake_registry)
        assert select_platform(index, "all") is index

    def test_single_platform_returns_child(self, fake_registry):
        """A single platform should select the matching child manifest."""
        child = select_platform(self._index(fake_registry), "linux/arm64")
        assert isinstance(child, ImageDescriptor)
        assert str(child.platform) == "linux/arm64"

    def test_several_platforms_return_index(self, fake_registry):
        """Several platforms should return the index when all are present."""
        index = self._index(fake_registry)
        assert select_platform(index, "linux/amd64,linux/arm/v7") is index

    def test_missing_platform(self, fake_registry):
        """A platform missing from the index should raise PlatformNotFoundError."""
        with pytest.raises(PlatformNotFoundError) as exc_info:
            select_platform(self._index(fake_registry), "linux/s390x")
        assert exc_info.value.platform == "linux/s390x"
        assert "linux/arm64" in exc_info.value.available

    def test_image_mismatch(self, fake_registry):
        """A single-platform image for another platform should be rejected."""
        digest = fake_registry.add_image(BASE, platform="linux/arm64")
        with pytest.raises(PlatformMismatchError) as exc_info:
            select_platform(fake_registry.artifacts[digest], "linux/amd64")
        assert exc_info.value.actual == "linux/arm64"

    def test_image_without_platform_accepted(self, fake_registry):
        """An image with no recorded platform should be accepted."""
        digest = fake_registry.add_image(BASE, platform=None)
        image = fake_registry.artifacts[digest]
        assert select_platform(image, "linux/amd64") is image


class TestResolve:
    """Tests for BaseImageResolver.resolve."""

    def test_resolves_pinned_reference(self, fake_registry, caplog):
        """Should return the name@digest reference and log the choice."""
        digest = fake_registry.add_image(BASE)
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)

        with caplog.at_level(logging.INFO, logger="koresolve.images.resolver"):
            ref, image = resolver.resolve("linux/amd64", "example.com/app")

        assert ref == f"registry.example.com/base@{digest}"
        assert image.digest == digest
        assert f"Using base {ref} for example.com/app" in caplog.text

    def test_tag_pinned_once_for_all_targets(self, fake_registry):
        """A tag should be looked up once and stay pinned for the run."""
        first = fake_registry.add_image(BASE, seed="first")
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)

        ref_a, _ = resolver.resolve("linux/amd64", "example.com/a")
        # The tag moves on the registry; the resolver keeps its pin
        fake_registry.add_image(BASE, seed="second")
        ref_b, _ = resolver.resolve("linux/amd64", "example.com/b")

        assert ref_a == ref_b == f"registry.example.com/base@{first}"
        assert len(fake_registry.digest_calls) == 1
        assert len(fake_registry.fetch_calls) == 1

    def test_digest_reference_skips_lookup(self, fake_registry):
        """A reference already pinned should not need a digest lookup."""
        digest = fake_registry.add_image(BASE)
        resolver = BaseImageResolver(
            fake_registry, default_base_image=f"registry.example.com/base:latest@{digest}"
        )
        ref, _ = resolver.resolve("linux/amd64", "example.com/app")
        assert ref == f"registry.example.com/base@{digest}"
        assert fake_registry.digest_calls == []

    def test_all_platforms_returns_index(self, fake_registry):
        """'all' should resolve to the whole index."""
        digest = fake_registry.add_index(BASE, ["linux/amd64", "linux/arm64"])
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)
        ref, artifact = resolver.resolve("all", "example.com/app")
        assert isinstance(artifact, ImageIndex)
        assert ref.endswith(digest)

    def test_index_child_for_single_platform(self, fake_registry):
        """A single platform should resolve to the child but keep the index reference."""
        digest = fake_registry.add_index(BASE, ["linux/amd64", "linux/arm64"])
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)
        ref, artifact = resolver.resolve("linux/arm64", "example.com/app")
        assert ref == f"registry.example.com/base@{digest}"
        assert isinstance(artifact, ImageDescriptor)
        assert str(artifact.platform) == "linux/arm64"

    def test_platforms_share_one_fetch(self, fake_registry):
        """Different platforms of one image should reuse the fetched index."""
        fake_registry.add_index(BASE, ["linux/amd64", "linux/arm64"])
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)
        resolver.resolve("linux/amd64", "example.com/a")
        resolver.resolve("linux/arm64", "example.com/b")
        assert len(fake_registry.fetch_calls) == 1

    def test_missing_platform(self, fake_registry):
        """A platform missing from the index should fail the target."""
        fake_registry.add_index(BASE, ["linux/amd64"])
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)
        with pytest.raises(PlatformNotFoundError):
            resolver.resolve("linux/arm64", "example.com/app")

    def test_single_image_mismatch(self, fake_registry):
        """A single-platform image for another platform should fail the target."""
        fake_registry.add_image(BASE, platform="linux/arm64")
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE)
        with pytest.raises(PlatformMismatchError):
            resolver.resolve("linux/amd64", "example.com/app")

    def test_strips_ko_scheme(self, fake_registry):
        """The ko:// prefix should not affect override lookup."""
        fake_registry.add_image(BASE)
        digest = fake_registry.add_image(OTHER)
        resolver = BaseImageResolver(
            fake_registry,
            default_base_image=BASE,
            base_image_overrides={"example.com/app": OTHER},
        )
        ref, _ = resolver.resolve("linux/amd64", "ko://example.com/app")
        assert ref == f"registry.example.com/other@{digest}"

    def test_invalid_reference(self, fake_registry):
        """A malformed configured reference should fail the target."""
        resolver = BaseImageResolver(fake_registry, default_base_image="Not A Ref")
        with pytest.raises(InvalidReferenceError):
            resolver.resolve("linux/amd64", "example.com/app")
        assert fake_registry.digest_calls == []

    def test_concurrent_targets_share_one_lookup(self):
        """Concurrent targets with one base should get identical results from one fetch."""
        release = threading.Event()
        registry = FakeRegistryClient(delay=release)
        registry.add_image(BASE)
        resolver = BaseImageResolver(registry, default_base_image=BASE)

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [
                pool.submit(resolver.resolve, "linux/amd64", f"example.com/app{i}")
                for i in range(8)
            ]
            release.set()
            results = [f.result(timeout=10) for f in futures]

        assert len({ref for ref, _ in results}) == 1
        assert all(artifact is results[0][1] for _, artifact in results)
        assert len(registry.digest_calls) == 1
        assert len(registry.fetch_calls) == 1

    def test_waiter_timeout(self):
        """A caller should time out while another resolves the same image."""
        release = threading.Event()
        registry = FakeRegistryClient(delay=release)
        registry.add_image(BASE)
        resolver = BaseImageResolver(registry, default_base_image=BASE)

        with ThreadPoolExecutor(max_workers=1) as pool:
            leader = pool.submit(resolver.resolve, "linux/amd64", "example.com/a")
            while not registry.digest_calls:
                release.wait(timeout=0.01)
            with pytest.raises(ResolveTimeoutError):
                resolver.resolve("linux/amd64", "example.com/b", timeout=0.05)
            release.set()
            ref, _ = leader.result(timeout=10)

        assert ref.startswith("registry.example.com/base@")

    def test_waiter_timeout_on_shared_pin(self):
        """A deadline should cover waiting on another platform's lookup of the same image."""
        release = threading.Event()
        registry = FakeRegistryClient(delay=release)
        registry.add_index(BASE, ["linux/amd64", "linux/arm64"])
        resolver = BaseImageResolver(registry, default_base_image=BASE)

        with ThreadPoolExecutor(max_workers=1) as pool:
            leader = pool.submit(resolver.resolve, "linux/amd64", "example.com/a")
            while not registry.digest_calls:
                release.wait(timeout=0.01)
            with pytest.raises(ResolveTimeoutError):
                resolver.resolve("all", "example.com/b", timeout=0.05)
            release.set()
            leader.result(timeout=10)

        ref, artifact = resolver.resolve("all", "example.com/b", timeout=5)
        assert isinstance(artifact, ImageIndex)
        assert ref.startswith("registry.example.com/base@")
        assert len(registry.digest_calls) == 1
        assert len(registry.fetch_calls) == 1


class TestRetries:
    """Tests for transient failure handling."""

    def test_transient_failure_retried(self, fake_registry):
        """Transient failures should be retried with growing backoff."""
        digest = fake_registry.add_image(BASE)
        fake_registry.failures.extend([transient(), transient(429)])
        sleeps = []
        resolver = BaseImageResolver(
            fake_registry, default_base_image=BASE, backoff=0.5, sleep=sleeps.append
        )

        ref, _ = resolver.resolve("linux/amd64", "example.com/app")

        assert ref.endswith(digest)
        assert sleeps == [0.5, 1.0]
        assert len(fake_registry.digest_calls) == 3

    def test_retries_exhausted(self, fake_registry):
        """The last transient error should surface once retries run out."""
        fake_registry.add_image(BASE)
        fake_registry.failures.extend([transient() for _ in range(3)])
        resolver = BaseImageResolver(
            fake_registry, default_base_image=BASE, retries=2, sleep=lambda _: None
        )

        with pytest.raises(RegistryError) as exc_info:
            resolver.resolve("linux/amd64", "example.com/app")
        assert exc_info.value.kind is RegistryErrorKind.TRANSIENT
        assert len(fake_registry.digest_calls) == 3

    def test_not_found_not_retried(self, fake_registry):
        """A missing image should fail immediately."""
        sleeps = []
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE, sleep=sleeps.append)

        with pytest.raises(RegistryError) as exc_info:
            resolver.resolve("linux/amd64", "example.com/app")
        assert exc_info.value.code == "registry_not_found"
        assert sleeps == []
        assert len(fake_registry.digest_calls) == 1

    def test_auth_failure_not_retried(self, fake_registry):
        """Authorization failures should not be retried."""
        fake_registry.add_image(BASE)
        fake_registry.failures.append(RegistryError("denied", RegistryErrorKind.AUTH, 401))
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE, sleep=lambda _: None)

        with pytest.raises(RegistryError) as exc_info:
            resolver.resolve("linux/amd64", "example.com/app")
        assert exc_info.value.kind is RegistryErrorKind.AUTH

    def test_unclassified_error_is_wrapped(self, fake_registry):
        """Non-registry exceptions should surface as RegistryError."""
        fake_registry.add_image(BASE)
        fake_registry.failures.append(LookupError("no such manifest"))
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE, sleep=lambda _: None)

        with pytest.raises(RegistryError) as exc_info:
            resolver.resolve("linux/amd64", "example.com/app")
        assert exc_info.value.kind is RegistryErrorKind.NOT_FOUND
        assert isinstance(exc_info.value.__cause__, LookupError)

    def test_failed_target_retried_on_later_call(self, fake_registry):
        """A failure should not be cached for later callers."""
        fake_registry.failures.append(RegistryError("denied", RegistryErrorKind.AUTH, 403))
        digest = fake_registry.add_image(BASE)
        resolver = BaseImageResolver(fake_registry, default_base_image=BASE, sleep=lambda _: None)

        with pytest.raises(RegistryError):
            resolver.resolve("linux/amd64", "example.com/app")
        ref, _ = resolver.resolve("linux/amd64", "example.com/app")

        assert ref.endswith(digest)
        assert len(fake_registry.digest_calls) == 2


def test_make_digest_is_valid():
    """Digests built for fixtures should be valid sha256 digests."""
    assert len(make_digest("x").split(":")[1]) == 64
