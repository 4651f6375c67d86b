"""koresolve - build target and base image resolution for image builds.

This package maps declared build targets to unique import paths and resolves,
pins, and caches the base container image each target is layered onto.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
