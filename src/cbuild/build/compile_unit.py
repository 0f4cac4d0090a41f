"""Compile unit: one buildable executable or library.

A CompileUnit holds the configuration of a single target (sources, flags,
paths, build type) and drives its compile-then-link pipeline:

    1. prepare()       merge project defaults, validate, resolve sources
    2. load cache      short-circuit when nothing changed on disk
    3. compile         only the sources in the cache's recompile set
    4. save cache
    5. link / archive  only when an object checksum changed, the source
                       membership changed, a dependency was relinked, or
                       the target is missing

Any failing tool raises ToolInvocationError and aborts the build; there is
no partial-unit recovery.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from tqdm import tqdm

from cbuild import output
from cbuild.errors import ConfigurationError
from cbuild.output import Verbosity
from cbuild.subprocess_utils import run_tool

from .build_context import BuildDefaults
from .build_profiles import BuildMode, BuildType, parse_build_mode, parse_build_type
from .checksum import PathLike
from .task_cache import TaskCache

logger = logging.getLogger(__name__)

# Defined on every compile so sources can detect they are built by cbuild
CBUILD_DEFINE = "-D_CBUILD"


@dataclass(frozen=True)
class PreparedUnit:
    """Effective settings of a unit after merging project defaults.

    ``sources[i]`` always compiles to ``objects[i]``.

    Attributes:
        build_mode: Effective build mode
        build_type: Kind of artifact produced
        compiler: Compiler (and linker driver) command
        archiver: Archiver command for static libraries
        object_destination: Directory receiving object files
        include_paths: Unit include paths followed by project include paths
        library_paths: Unit library paths followed by project library paths
        forced_includes: Headers passed with ``-include``
        sources: Final, deduplicated source list
        objects: Object file for each source, positionally paired
        target: Path of the linked or archived artifact
    """

    build_mode: BuildMode
    build_type: BuildType
    compiler: str
    archiver: str
    object_destination: Path
    include_paths: tuple[Path, ...]
    library_paths: tuple[Path, ...]
    forced_includes: tuple[Path, ...]
    sources: tuple[Path, ...]
    objects: tuple[Path, ...]
    target: Path


def _remove_all(items: list, value: Any) -> None:
    items[:] = [item for item in items if item != value]


class CompileUnit:
    """A single buildable target with its own incremental cache.

    Only the name is required. Everything left unset is filled in from the
    project's BuildDefaults when the unit is prepared; the target file
    defaults to the unit name and the target path to the current directory.

    Example:
        unit = CompileUnit("api")
        unit.set_build_type(BuildType.SHARED_LIBRARY)
        unit.add_source_path("src/api")
        unit.add_source_extension("cc")
        unit.enable_source_glob(True)
    """

    def __init__(self, name: str):
        self.name = name
        self.build_mode: Optional[BuildMode] = None
        self.build_type: Optional[BuildType] = None
        self.compiler: Optional[str] = None
        self.archiver: Optional[str] = None
        self.target_file = name
        self.target_path = Path(".")
        self.object_destination: Optional[Path] = None
        self.source_glob: Optional[bool] = None

        self.dependencies: list[str] = []
        self.compiler_flags: list[str] = []
        self.linker_flags: list[str] = []
        self.link_libraries: list[str] = []
        self.link_library_paths: list[Path] = []
        self.include_paths: list[Path] = []
        self.source_extensions: list[str] = []
        self.source_files: list[Path] = []
        self.source_paths: list[Path] = []
        self.forced_includes: list[Path] = []

        self.cache = TaskCache()
        self.prepared: Optional[PreparedUnit] = None
        self.built = False
        self.linked = False

    def __repr__(self) -> str:
        return f"CompileUnit({self.name!r})"

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_compiler_flag(self, flag: str) -> None:
        self.compiler_flags.append(flag)

    def add_compiler_flags(self, flags: Sequence[str]) -> None:
        self.compiler_flags.extend(flags)

    def add_dependency(self, name: str) -> None:
        self.dependencies.append(name)

    def add_dependencies(self, names: Sequence[str]) -> None:
        self.dependencies.extend(names)

    def add_forced_include(self, path: PathLike) -> None:
        self.forced_includes.append(Path(path))

    def add_forced_includes(self, paths: Sequence[PathLike]) -> None:
        self.forced_includes.extend(Path(p) for p in paths)

    def add_linker_flag(self, flag: str) -> None:
        self.linker_flags.append(flag)

    def add_linker_flags(self, flags: Sequence[str]) -> None:
        self.linker_flags.extend(flags)

    def add_link_library(self, library: str) -> None:
        self.link_libraries.append(library)

    def add_link_libraries(self, libraries: Sequence[str]) -> None:
        self.link_libraries.extend(libraries)

    def add_link_library_path(self, path: PathLike) -> None:
        self.link_library_paths.append(Path(path))

    def add_include_path(self, path: PathLike) -> None:
        self.include_paths.append(Path(path))

    def add_source_extension(self, extension: str) -> None:
        """Add an extension used for globbing; "cc" and ".cc" are equivalent."""
        if not extension.startswith("."):
            extension = f".{extension}"
        self.source_extensions.append(extension)

    def add_source_path(self, path: PathLike) -> None:
        self.source_paths.append(Path(path))

    def add_source_file(self, path: PathLike) -> None:
        self.source_files.append(Path(path))

    def enable_source_glob(self, enabled: bool) -> None:
        self.source_glob = enabled

    def remove_compiler_flag(self, flag: str) -> None:
        _remove_all(self.compiler_flags, flag)

    def remove_dependency(self, name: str) -> None:
        _remove_all(self.dependencies, name)

    def remove_forced_include(self, path: PathLike) -> None:
        _remove_all(self.forced_includes, Path(path))

    def remove_linker_flag(self, flag: str) -> None:
        _remove_all(self.linker_flags, flag)

    def remove_link_library(self, library: str) -> None:
        _remove_all(self.link_libraries, library)

    def remove_link_library_path(self, path: PathLike) -> None:
        _remove_all(self.link_library_paths, Path(path))

    def remove_include_path(self, path: PathLike) -> None:
        _remove_all(self.include_paths, Path(path))

    def remove_source_extension(self, extension: str) -> None:
        if not extension.startswith("."):
            extension = f".{extension}"
        _remove_all(self.source_extensions, extension)

    def remove_source_path(self, path: PathLike) -> None:
        _remove_all(self.source_paths, Path(path))

    def remove_source_file(self, path: PathLike) -> None:
        _remove_all(self.source_files, Path(path))

    def set_build_mode(self, mode: "BuildMode | str") -> None:
        self.build_mode = parse_build_mode(mode)

    def set_build_type(self, build_type: "BuildType | str") -> None:
        self.build_type = parse_build_type(build_type)

    def set_compiler(self, compiler: str) -> None:
        self.compiler = compiler

    def set_archiver(self, archiver: str) -> None:
        self.archiver = archiver

    def set_object_destination(self, path: PathLike) -> None:
        self.object_destination = Path(path)

    def set_target_file(self, name: str) -> None:
        self.target_file = name

    def set_target_path(self, path: PathLike) -> None:
        self.target_path = Path(path)

    def describe(self) -> str:
        """Return a printable summary of the unit configuration."""
        rows = [
            ("Unit Name", self.name),
            ("Build Type", self.build_type),
            ("Build Mode", self.build_mode),
            ("Target File", self.target_file),
            ("Target Path", self.target_path),
            ("Compiler", self.compiler),
            ("Compiler Flags", self.compiler_flags),
            ("Object Destination", self.object_destination),
            ("Linker Flags", self.linker_flags),
            ("Link Libraries", self.link_libraries),
            ("Link Library Paths", [str(p) for p in self.link_library_paths]),
            ("Forced Includes", [str(p) for p in self.forced_includes]),
            ("Include Paths", [str(p) for p in self.include_paths]),
            ("Dependencies", self.dependencies),
            ("Source Glob", self.source_glob),
            ("Source Extensions", self.source_extensions),
            ("Source Paths", [str(p) for p in self.source_paths]),
            ("Source Files", [str(p) for p in self.source_files]),
        ]
        return "\n".join(f"{label + ' ':.<19}: {value}" for label, value in rows)

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self, defaults: BuildDefaults) -> PreparedUnit:
        """Merge project defaults, validate, and resolve sources and objects.

        The unit's own configuration is never modified, so preparing twice
        with the same inputs yields the same result.

        Args:
            defaults: Project-wide defaults

        Returns:
            The effective settings, also stored in ``self.prepared``

        Raises:
            ConfigurationError: If the mode, type, compiler, object
                destination, or target file is missing or invalid, if two
                sources map to the same object file, or if no sources remain
        """
        build_mode = defaults.build_mode if defaults.build_mode is not None else self.build_mode
        if build_mode is None:
            raise ConfigurationError(f"Invalid build mode for unit '{self.name}': none set")
        build_mode = parse_build_mode(build_mode)

        if self.build_type is None:
            raise ConfigurationError(f"Invalid build type for unit '{self.name}': none set")
        build_type = parse_build_type(self.build_type)

        compiler = self.compiler or defaults.compiler
        if not compiler:
            raise ConfigurationError(f"No compiler specified for unit '{self.name}'")

        object_destination = self.object_destination or defaults.object_destination
        if object_destination is None or not str(object_destination):
            raise ConfigurationError(f"No object file destination specified for unit '{self.name}'")
        object_destination = Path(object_destination)

        if not self.target_file:
            raise ConfigurationError(f"No target filename specified for unit '{self.name}'")

        source_extensions = self.source_extensions or list(defaults.source_extensions)
        source_glob = self.source_glob if self.source_glob is not None else bool(defaults.source_globbing)

        candidates = list(self.source_files)
        if source_glob:
            candidates.extend(self._glob_sources(source_extensions))

        sources = self._deduplicate(candidates)
        if not sources:
            raise ConfigurationError(f"No source files specified for unit '{self.name}'")

        objects = []
        owners: dict[Path, Path] = {}
        for src in sources:
            obj = object_destination / f"{src.stem}.o"
            if obj in owners:
                raise ConfigurationError(
                    f"Unit '{self.name}': sources {owners[obj]} and {src} both compile to {obj}"
                )
            owners[obj] = src
            objects.append(obj)

        self.prepared = PreparedUnit(
            build_mode=build_mode,
            build_type=build_type,
            compiler=compiler,
            archiver=self.archiver or defaults.archiver,
            object_destination=object_destination,
            include_paths=(*self.include_paths, *defaults.include_paths),
            library_paths=(*self.link_library_paths, *defaults.library_paths),
            forced_includes=(*self.forced_includes, *defaults.forced_includes),
            sources=tuple(sources),
            objects=tuple(objects),
            target=self.target_path / build_type.target_filename(self.target_file),
        )
        return self.prepared

    def _glob_sources(self, extensions: Sequence[str]) -> list[Path]:
        output.log_detail(">>> Source globbing enabled", indent=0, level=Verbosity.DETAILED)
        found: list[Path] = []
        for path in self.source_paths:
            for ext in extensions:
                output.log(f"==> Scanning {path} for {ext}", level=Verbosity.AVERAGE)
                for match in sorted(path.glob(f"*{ext}")):
                    if match.is_file():
                        output.log_detail(f"  -> Found {match}", indent=0, level=Verbosity.AVERAGE)
                        found.append(match)
        return found

    def _deduplicate(self, candidates: Sequence[Path]) -> list[Path]:
        seen: set[Path] = set()
        unique: list[Path] = []
        for src in candidates:
            key = src.resolve()
            if key in seen:
                logger.debug(f"Unit '{self.name}': skipping duplicate source {src}")
                continue
            seen.add(key)
            unique.append(src)
        return unique

    def _require_prepared(self) -> PreparedUnit:
        if self.prepared is None:
            raise ConfigurationError(f"Unit '{self.name}' has not been prepared")
        return self.prepared

    @property
    def object_files(self) -> list[Path]:
        """Object files of the prepared unit (empty before preparation)."""
        return list(self.prepared.objects) if self.prepared else []

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def needs_recompile(self) -> bool:
        """Queue every source whose content changed since its last compile.

        Sources already queued (e.g. by a cold-start cache) stay queued.

        Returns:
            True if at least one source is stale
        """
        prepared = self._require_prepared()

        self.cache.dump()
        stale = False
        for src in prepared.sources:
            if not self.cache.is_source_uptodate(src):
                self.cache.recompile.add(src)
                stale = True
        return stale

    def _queue_stale_objects(self) -> bool:
        # An object deleted or modified on disk must be rebuilt from its source
        prepared = self._require_prepared()
        stale = False
        for src, obj in zip(prepared.sources, prepared.objects):
            if not self.cache.is_object_uptodate(obj):
                self.cache.recompile.add(src)
                stale = True
        return stale

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def compile_command(self, source: Path, obj: Path) -> list[str]:
        """Build the compiler command line for one translation unit.

        Raises:
            ConfigurationError: If the unit has not been prepared
        """
        prepared = self._require_prepared()
        cmd = [prepared.compiler, "-c", "-o", str(obj), *self.compiler_flags, CBUILD_DEFINE]
        for header in prepared.forced_includes:
            cmd.extend(["-include", str(header)])
        cmd.extend(f"-I{path}" for path in prepared.include_paths)
        if prepared.build_type is BuildType.SHARED_LIBRARY:
            cmd.append("-fPIC")
        cmd.append(str(source))
        return cmd

    def link_command(self) -> list[str]:
        """Build the link (or archive) command line for the target.

        Object files always precede linker flags and libraries.

        Raises:
            ConfigurationError: If the unit has not been prepared
        """
        prepared = self._require_prepared()
        objects = [str(obj) for obj in prepared.objects]

        if prepared.build_type is BuildType.STATIC_LIBRARY:
            return [prepared.archiver, "rcs", str(prepared.target), *objects]

        cmd = [prepared.compiler]
        if prepared.build_type is BuildType.SHARED_LIBRARY:
            cmd.append("-shared")
        cmd.extend(["-o", str(prepared.target), *objects, *self.linker_flags])
        cmd.extend(f"-L{path}" for path in prepared.library_paths)
        cmd.extend(f"-l{library}" for library in self.link_libraries)
        return cmd

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def compile(
        self,
        defaults: BuildDefaults,
        force: bool = False,
        force_relink: bool = False,
        progress: bool = False,
    ) -> None:
        """Bring the unit's target up to date.

        Args:
            defaults: Project-wide defaults
            force: Ignore the persisted cache and recompile every source
            force_relink: Relink even if no object changed (a dependency
                was relinked in this run)
            progress: Show a progress bar over the compilations

        Raises:
            ConfigurationError: If the unit configuration is invalid
            ToolInvocationError: If the compiler, linker, or archiver fails
        """
        output.log("")
        output.log(f">>> Processing unit: {self.name}", level=Verbosity.LITTLE, style="bold")

        prepared = self.prepare(defaults)
        for line in self.describe().splitlines():
            output.log_detail(line, indent=0, level=Verbosity.DETAILED)

        self.built = False
        self.linked = False
        self.cache.clear()
        cache_file = defaults.cache_file_for(self.name)

        membership_changed = False
        if not force and self.cache.load(cache_file):
            membership_changed = self.cache.reconcile(prepared.sources, prepared.objects)
            stale_sources = self.needs_recompile()
            stale_objects = self._queue_stale_objects()
            if not (stale_sources or stale_objects or membership_changed or force_relink) and prepared.target.exists():
                output.log_detail(f"{prepared.target.name} is up to date", level=Verbosity.LITTLE)
                self.built = True
                return
        else:
            output.log(">>> Creating new cache", level=Verbosity.AVERAGE)
            self.cache.create(prepared.sources, prepared.objects)

        snapshot = self.cache.snapshot()

        pending = [(src, obj) for src, obj in zip(prepared.sources, prepared.objects) if src in self.cache.recompile]
        if pending:
            output.log(">>> Compiling", level=Verbosity.AVERAGE)
            if progress:
                with tqdm(total=len(pending), desc=f"Compiling {self.name}", unit="file", ncols=80, leave=False) as pbar:
                    self._compile_sources(pending, progress_bar=pbar)
            else:
                self._compile_sources(pending)

        output.log_detail("==> Saving cache", indent=0, level=Verbosity.DETAILED)
        self.cache.dump()
        self.cache.save(cache_file)

        relink = force or force_relink or membership_changed
        for old, new in zip(snapshot, self.cache.entries):
            logger.debug(f"Old cache: [{old.object} : {old.object_checksum}]")
            logger.debug(f"New cache: [{new.object} : {new.object_checksum}]")
            if old.object_checksum != new.object_checksum:
                relink = True

        if not relink and prepared.target.exists():
            logger.debug(f"Objects unchanged and {prepared.target} exists; not relinking")
            self.built = True
            return

        self._link()
        self.built = True
        self.linked = True
        output.log_success(f"      {self.name} built successfully")

    def _compile_sources(self, pending: Sequence[tuple[Path, Path]], progress_bar: Optional[Any] = None) -> None:
        for src, obj in pending:
            if progress_bar is None:
                output.log_detail(f"Compiling {src.name}", level=Verbosity.AVERAGE)
            obj.parent.mkdir(parents=True, exist_ok=True)
            cmd = self.compile_command(src, obj)
            output.log_command(cmd)
            run_tool(cmd, f"Compilation of {src}")

            self.cache.update_source(src)
            self.cache.update_object(obj)
            self.cache.recompile.discard(src)

            if progress_bar is not None:
                progress_bar.update(1)

    def _link(self) -> None:
        prepared = self._require_prepared()
        target = prepared.target
        target.parent.mkdir(parents=True, exist_ok=True)

        if prepared.build_type is BuildType.STATIC_LIBRARY:
            # ar only adds and replaces members; start from an empty archive
            if target.exists():
                target.unlink()
            step = "Creating archive"
        else:
            step = "Linking"

        cmd = self.link_command()
        with output.TimedLogger(f">>> {step} {target.name}", level=Verbosity.AVERAGE):
            output.log_command(cmd)
            run_tool(cmd, f"{step} of {target}")

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear_cache(self, defaults: BuildDefaults) -> None:
        """Forget every recorded checksum and delete the cache file."""
        self.cache.clear()
        cache_file = defaults.cache_file_for(self.name)
        if cache_file.exists():
            cache_file.unlink()
            logger.debug(f"Removed cache file {cache_file}")

    def clean(self, defaults: BuildDefaults) -> list[Path]:
        """Delete the cache, object files, and target of this unit.

        Args:
            defaults: Project-wide defaults

        Returns:
            Paths that were removed
        """
        self.clear_cache(defaults)
        prepared = self.prepare(defaults)
        removed = []
        for path in (*prepared.objects, prepared.target):
            if path.is_file():
                path.unlink()
                removed.append(path)
                output.log_detail(f"Removed {path}", level=Verbosity.DETAILED)
        self.built = False
        self.linked = False
        return removed
