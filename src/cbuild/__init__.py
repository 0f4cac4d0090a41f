"""cbuild - incremental build orchestrator for native C/C++ projects.

cbuild tracks source and object checksums across runs, recompiles only the
sources whose content changed, and relinks a target only when one of its
objects actually changed (or the target is missing).

Example:
    >>> from cbuild import BuildDefaults, BuildType, CompileUnit, Project
    >>>
    >>> project = Project("demo")
    >>> app = CompileUnit("app")
    >>> app.set_build_type(BuildType.EXECUTABLE)
    >>> app.add_source_file("main.cc")
    >>> project.add(app)
    >>> project.build(BuildDefaults(compiler="g++", object_destination="obj"))
"""

from cbuild.build.build_context import BuildDefaults
from cbuild.build.build_profiles import BuildMode, BuildType
from cbuild.build.compile_unit import CompileUnit
from cbuild.build.project import Project
from cbuild.build.task_cache import CacheEntry, TaskCache
from cbuild.errors import (
    CBuildError,
    ConfigurationError,
    CyclicDependencyError,
    ToolInvocationError,
)

__version__ = "1.0.0"

__all__ = [
    "BuildDefaults",
    "BuildMode",
    "BuildType",
    "CBuildError",
    "CacheEntry",
    "CompileUnit",
    "ConfigurationError",
    "CyclicDependencyError",
    "Project",
    "TaskCache",
    "ToolInvocationError",
    "__version__",
]
