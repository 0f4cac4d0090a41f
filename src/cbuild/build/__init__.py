"""Build system core: checksums, per-unit caches, compile units, projects."""

from .build_context import BuildDefaults
from .build_profiles import BuildMode, BuildType, parse_build_mode, parse_build_type
from .checksum import checksum, checksum_if_exists
from .compile_unit import CompileUnit, PreparedUnit
from .project import Project
from .task_cache import CacheEntry, TaskCache

__all__ = [
    "BuildDefaults",
    "BuildMode",
    "BuildType",
    "CacheEntry",
    "CompileUnit",
    "PreparedUnit",
    "Project",
    "TaskCache",
    "checksum",
    "checksum_if_exists",
    "parse_build_mode",
    "parse_build_type",
]
