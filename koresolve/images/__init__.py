"""Base image resolution.

This module handles:
- Parsing and normalizing image references
- Registry access (digest lookup, manifest and index fetch)
- Pinning, platform selection, and single-flight caching per base image
"""

from koresolve.images.cache import SingleFlightCache
from koresolve.images.platform import (
    DEFAULT_PLATFORM,
    Platform,
    normalize_platform_spec,
    parse_platform_spec,
)
from koresolve.images.reference import ImageReference, parse_reference
from koresolve.images.registry import (
    HttpRegistryClient,
    ImageDescriptor,
    ImageIndex,
    RegistryClient,
)
from koresolve.images.resolver import BaseImageResolver, select_platform

__all__ = [
    "BaseImageResolver",
    "DEFAULT_PLATFORM",
    "HttpRegistryClient",
    "ImageDescriptor",
    "ImageIndex",
    "ImageReference",
    "Platform",
    "RegistryClient",
    "SingleFlightCache",
    "normalize_platform_spec",
    "parse_platform_spec",
    "parse_reference",
    "select_platform",
]
