"""Build Defaults - project-wide fallback configuration.

This module defines BuildDefaults, the settings every unit falls back to
when it leaves a field unset.

Design:
    BuildDefaults is created once (by the project file loader, the CLI, or a
    build script) and passed explicitly to each unit's preparation step.
    Scalar fields fill in only what a unit left unset; path lists are
    appended to the unit's own lists. Nothing is read from ambient process
    state.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .build_profiles import BuildMode


@dataclass(frozen=True)
class BuildDefaults:
    """Global defaults merged into every unit at preparation time.

    Attributes:
        compiler: Compiler command used when a unit sets none (e.g. "g++")
        archiver: Archiver command for static libraries
        object_destination: Directory for object files when a unit sets none
        library_paths: Library search paths appended to every unit
        include_paths: Include paths appended to every unit
        forced_includes: Headers force-included into every unit (e.g. the
            generated configuration header)
        source_extensions: Extensions used for globbing when a unit sets none
        source_globbing: Glob toggle used when a unit leaves it unset
        build_mode: When set, overrides the build mode of every unit
        cache_dir: Directory holding the per-unit ``.<name>.cache`` files
    """

    compiler: Optional[str] = None
    archiver: str = "ar"
    object_destination: Optional[Path] = None
    library_paths: tuple[Path, ...] = ()
    include_paths: tuple[Path, ...] = ()
    forced_includes: tuple[Path, ...] = ()
    source_extensions: tuple[str, ...] = ()
    source_globbing: Optional[bool] = None
    build_mode: Optional[BuildMode] = None
    cache_dir: Path = field(default_factory=Path)

    def with_overrides(self, **changes: object) -> "BuildDefaults":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def cache_file_for(self, unit_name: str) -> Path:
        """Path of the persisted cache file for a unit.

        Args:
            unit_name: Unique unit name

        Returns:
            ``<cache_dir>/.<unit_name>.cache``
        """
        return self.cache_dir / f".{unit_name}.cache"
