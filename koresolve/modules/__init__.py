"""Module identity resolution.

This module handles:
- Reading module descriptors (go.mod)
- Identifying the module that encloses a directory
- Computing import paths from dir/main pairs
"""

from koresolve.modules.descriptor import (
    GoModReader,
    ModuleDescriptorReader,
    parse_module_directive,
)
from koresolve.modules.resolver import (
    Module,
    ModuleResolver,
    locate_package_dir,
    resolve_import_path,
    strip_scheme,
)

__all__ = [
    "GoModReader",
    "Module",
    "ModuleDescriptorReader",
    "ModuleResolver",
    "locate_package_dir",
    "parse_module_directive",
    "resolve_import_path",
    "strip_scheme",
]
