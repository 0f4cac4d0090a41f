"""Project file (cbuild.ini) loader.

A project file declares project-wide defaults, build options, and one
section per compile unit:

    [cbuild]
    name = demo
    compiler = g++
    object_destination = obj
    include_paths = src
    source_extensions = cc
    config_header = src/build_config.h

    [options]
    DEBUG = false
    USING_JSON = true

    [conflicts]
    net = USING_BOOST_NET USING_OPENSSL_NET

    [unit:json]
    enabled_if = USING_JSON
    build_type = static-library
    source_files = third-party/json/json.cpp

    [unit:app]
    build_type = executable
    source_paths = src
    source_glob = true
    compiler_flags = -std=c++17 -Wall
    compiler_flags[debug] = -g
    compiler_flags[release] = -O2
    dependencies[USING_JSON] = json

Keys may carry a qualifier in brackets. A qualified key applies only when
the qualifier is the active build mode or names an enabled option; list
values are appended to the unqualified list, scalar values replace it.
Relative paths are resolved against the directory of the project file.
"""

import configparser
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from cbuild import output
from cbuild.build.build_context import BuildDefaults
from cbuild.build.build_profiles import BuildMode, parse_build_mode
from cbuild.build.compile_unit import CompileUnit
from cbuild.build.project import Project
from cbuild.errors import ConfigurationError
from cbuild.output import Verbosity

from .build_config import (
    COMPILER_OPTION,
    DEBUG_OPTION,
    BuildOptions,
    OptionValue,
    coerce_option_value,
    find_conflicts,
    render_config_header,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_FILE = "cbuild.ini"

GLOBAL_SECTION = "cbuild"
OPTIONS_SECTION = "options"
CONFLICTS_SECTION = "conflicts"
UNIT_SECTION_PREFIX = "unit:"

_GLOBAL_KEYS = frozenset(
    {
        "name",
        "compiler",
        "archiver",
        "object_destination",
        "include_paths",
        "library_paths",
        "source_extensions",
        "source_globbing",
        "build_mode",
        "cache_dir",
        "config_header",
    }
)

# List keys of a unit section: key -> (CompileUnit method, values are paths)
_UNIT_LIST_KEYS: dict[str, tuple[str, bool]] = {
    "dependencies": ("add_dependency", False),
    "compiler_flags": ("add_compiler_flag", False),
    "linker_flags": ("add_linker_flag", False),
    "link_libraries": ("add_link_library", False),
    "link_library_paths": ("add_link_library_path", True),
    "include_paths": ("add_include_path", True),
    "source_extensions": ("add_source_extension", False),
    "source_files": ("add_source_file", True),
    "source_paths": ("add_source_path", True),
    "forced_includes": ("add_forced_include", True),
}

# Scalar keys of a unit section: key -> (CompileUnit method, values are paths)
_UNIT_SCALAR_KEYS: dict[str, tuple[str, bool]] = {
    "build_mode": ("set_build_mode", False),
    "build_type": ("set_build_type", False),
    "compiler": ("set_compiler", False),
    "archiver": ("set_archiver", False),
    "target_file": ("set_target_file", False),
    "target_path": ("set_target_path", True),
    "object_destination": ("set_object_destination", True),
}


@dataclass
class ProjectConfig:
    """Everything loaded from a project file.

    Attributes:
        project: The project with all enabled units
        defaults: Project-wide defaults for unit preparation
        options: Effective build options
        conflicts: Mutually exclusive option groups, keyed by group name
        config_header: Path of the generated configuration header, if any
        project_file: The project file that was loaded
    """

    project: Project
    defaults: BuildDefaults
    options: BuildOptions
    conflicts: dict[str, list[str]] = field(default_factory=dict)
    config_header: Optional[Path] = None
    project_file: Optional[Path] = None

    def render_header(self) -> str:
        """Render the configuration header for the effective options."""
        return render_config_header(self.options, self.conflicts)


def _split(raw: str) -> list[str]:
    try:
        return shlex.split(raw)
    except ValueError as e:
        raise ConfigurationError(f"Malformed value {raw!r}: {e}") from None


def _parse_bool(raw: str, key: str) -> bool:
    value = coerce_option_value(raw)
    if not isinstance(value, bool):
        raise ConfigurationError(f"Expected true or false for '{key}', got {raw!r}")
    return value


def _split_key(key: str) -> tuple[str, Optional[str]]:
    """Split ``name[QUALIFIER]`` into its name and qualifier."""
    if key.endswith("]") and "[" in key:
        name, _, qualifier = key[:-1].partition("[")
        return name.strip(), qualifier.strip()
    return key, None


def _read_parser(path: Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser(delimiters=("=",), interpolation=None)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    try:
        with open(path, "r", encoding="utf-8") as f:
            parser.read_file(f)
    except configparser.Error as e:
        raise ConfigurationError(f"Malformed project file {path}: {e}") from e
    return parser


class _Qualifiers:
    """Decides whether a qualified key is active."""

    def __init__(self, build_mode: Optional[BuildMode], options: BuildOptions):
        self.build_mode = build_mode
        self.options = options

    def active(self, qualifier: Optional[str]) -> bool:
        if qualifier is None:
            return True
        if self.build_mode is not None and qualifier.lower() == self.build_mode.value:
            return True
        return self.options.is_enabled(qualifier)


def _resolve_path(base_dir: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    return path if path.is_absolute() else base_dir / path


def _determine_build_mode(
    explicit: Optional[BuildMode], options: BuildOptions, global_section: Mapping[str, str]
) -> BuildMode:
    if explicit is not None:
        return explicit
    if options.is_enabled(DEBUG_OPTION):
        return BuildMode.DEBUG
    if "build_mode" in global_section:
        return parse_build_mode(global_section["build_mode"])
    return BuildMode.RELEASE


def _load_defaults(
    section: Mapping[str, str],
    base_dir: Path,
    build_mode: BuildMode,
    compiler: Optional[str],
    config_header: Optional[Path],
) -> BuildDefaults:
    unknown = sorted(set(section) - _GLOBAL_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown keys in [{GLOBAL_SECTION}]: {', '.join(unknown)}")

    object_destination = section.get("object_destination")
    source_globbing = section.get("source_globbing")
    extensions = _split(section.get("source_extensions", ""))

    return BuildDefaults(
        compiler=compiler or section.get("compiler") or None,
        archiver=section.get("archiver", "ar"),
        object_destination=_resolve_path(base_dir, object_destination) if object_destination else None,
        library_paths=tuple(_resolve_path(base_dir, p) for p in _split(section.get("library_paths", ""))),
        include_paths=tuple(_resolve_path(base_dir, p) for p in _split(section.get("include_paths", ""))),
        forced_includes=(config_header,) if config_header is not None else (),
        source_extensions=tuple(ext if ext.startswith(".") else f".{ext}" for ext in extensions),
        source_globbing=_parse_bool(source_globbing, "source_globbing") if source_globbing is not None else None,
        build_mode=build_mode,
        cache_dir=_resolve_path(base_dir, section.get("cache_dir", ".")),
    )


def _load_unit(name: str, section: Mapping[str, str], base_dir: Path, qualifiers: _Qualifiers) -> CompileUnit:
    unit = CompileUnit(name)
    scalars: dict[str, str] = {}
    # Unqualified entries first so qualified list values are appended after them
    ordered = sorted(section.items(), key=lambda item: _split_key(item[0])[1] is not None)

    for key, raw in ordered:
        key_name, qualifier = _split_key(key)
        if key_name == "enabled_if":
            continue
        if key_name not in _UNIT_LIST_KEYS and key_name not in _UNIT_SCALAR_KEYS and key_name != "source_glob":
            raise ConfigurationError(f"Unknown key '{key}' in [{UNIT_SECTION_PREFIX}{name}]")
        if not qualifiers.active(qualifier):
            logger.debug(f"Unit '{name}': skipping inactive key {key}")
            continue

        if key_name in _UNIT_LIST_KEYS:
            method_name, is_path = _UNIT_LIST_KEYS[key_name]
            add: Callable[[Union[str, Path]], None] = getattr(unit, method_name)
            for value in _split(raw):
                add(_resolve_path(base_dir, value) if is_path else value)
        else:
            scalars[key_name] = raw.strip()

    for key_name, raw in scalars.items():
        if key_name == "source_glob":
            unit.enable_source_glob(_parse_bool(raw, key_name))
            continue
        method_name, is_path = _UNIT_SCALAR_KEYS[key_name]
        getattr(unit, method_name)(_resolve_path(base_dir, raw) if is_path else raw)

    if "target_path" not in scalars:
        unit.set_target_path(base_dir)
    return unit


def load_project(
    project_file: Union[str, Path],
    option_overrides: Optional[Mapping[str, OptionValue]] = None,
    build_mode: Optional[BuildMode] = None,
    compiler: Optional[str] = None,
) -> ProjectConfig:
    """Load a project file.

    Args:
        project_file: Path to cbuild.ini
        option_overrides: Build options given on the command line
        build_mode: Forces the build mode of every unit (e.g. from --debug)
        compiler: Forces the default compiler (e.g. from --compiler)

    Returns:
        The loaded project configuration

    Raises:
        ConfigurationError: If the file is missing or malformed, options
            conflict, or a unit is misconfigured
    """
    path = Path(project_file).resolve()
    if not path.is_file():
        raise ConfigurationError(f"Project file not found: {path}")
    base_dir = path.parent

    output.log(f"==> Reading project file: {path}", level=Verbosity.LITTLE)
    parser = _read_parser(path)
    global_section: Mapping[str, str] = parser[GLOBAL_SECTION] if parser.has_section(GLOBAL_SECTION) else {}

    declared: dict[str, OptionValue] = {}
    if parser.has_section(OPTIONS_SECTION):
        declared = {name: coerce_option_value(raw) for name, raw in parser[OPTIONS_SECTION].items()}
    options = BuildOptions(declared)
    if option_overrides:
        options.apply(option_overrides)
    for name in options.enabled():
        output.log_detail(f"-> Option {name} = {options.as_dict()[name]}", indent=2, level=Verbosity.MINIMAL)

    conflicts: dict[str, list[str]] = {}
    if parser.has_section(CONFLICTS_SECTION):
        conflicts = {group: _split(raw) for group, raw in parser[CONFLICTS_SECTION].items()}
    problems = find_conflicts(options, conflicts)
    if problems:
        raise ConfigurationError("Conflicting build options: " + "; ".join(problems))

    mode = _determine_build_mode(build_mode, options, global_section)
    compiler = compiler or options.value(COMPILER_OPTION)
    header_raw = global_section.get("config_header")
    config_header = _resolve_path(base_dir, header_raw) if header_raw else None

    defaults = _load_defaults(global_section, base_dir, mode, compiler, config_header)
    project = Project(global_section.get("name", base_dir.name))
    qualifiers = _Qualifiers(mode, options)

    for section_name in parser.sections():
        if not section_name.startswith(UNIT_SECTION_PREFIX):
            if section_name not in (GLOBAL_SECTION, OPTIONS_SECTION, CONFLICTS_SECTION):
                raise ConfigurationError(f"Unknown section [{section_name}] in {path}")
            continue
        unit_name = section_name[len(UNIT_SECTION_PREFIX):].strip()
        if not unit_name:
            raise ConfigurationError(f"Unit section without a name in {path}")
        section = parser[section_name]
        enabled_if = section.get("enabled_if")
        if enabled_if and not options.is_enabled(enabled_if.strip()):
            logger.debug(f"Unit '{unit_name}' disabled: option {enabled_if} is off")
            continue
        project.add(_load_unit(unit_name, section, base_dir, qualifiers))

    logger.debug(f"Loaded {len(project)} units from {path} (build mode {mode})")
    return ProjectConfig(
        project=project,
        defaults=defaults,
        options=options,
        conflicts=conflicts,
        config_header=config_header,
        project_file=path,
    )
