"""
Command-line interface for cbuild.

This module provides the `cbuild` CLI tool for building C/C++ projects
described by a cbuild.ini project file.
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from cbuild import __version__, output
from cbuild.build.build_profiles import BuildMode
from cbuild.config import DEFAULT_PROJECT_FILE, load_project, parse_option_args, write_config_header
from cbuild.errors import ConfigurationError, CyclicDependencyError, ToolInvocationError
from cbuild.output import Verbosity

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    project_file: Optional[Path] = None
    options: list[str] = field(default_factory=list)
    debug: bool = False
    compiler: Optional[str] = None
    targets: list[str] = field(default_factory=list)
    force_rebuild: bool = False
    clear_cache: bool = False
    verbosity: int = Verbosity.AVERAGE
    progress: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    project_file: Optional[Path] = None
    verbosity: int = Verbosity.AVERAGE


def setup_logging(verbosity: int) -> None:
    """Configure the root logger for diagnostic output.

    Diagnostics go to stderr; at the DEBUG tier every module logger is shown.
    """
    level = logging.DEBUG if verbosity >= Verbosity.DEBUG else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT, stream=sys.stderr, force=True)


def _resolve_project_file(project_dir: Path, project_file: Optional[Path]) -> Path:
    if project_file is None:
        return project_dir / DEFAULT_PROJECT_FILE
    return project_file if project_file.is_absolute() else project_dir / project_file


def build_command(args: BuildArgs) -> None:
    """Build the units of a project.

    Examples:
        cbuild build                         # Build every unit in ./cbuild.ini
        cbuild build path/to/project         # Build another project
        cbuild build -o DEBUG -o USING_JSON  # Enable build options
        cbuild build -t app                  # Build 'app' and its dependencies
        cbuild build --force-rebuild         # Ignore caches, rebuild everything
    """
    output.init_timer()
    output.set_verbosity(args.verbosity)
    setup_logging(args.verbosity)
    output.log_header("cbuild", __version__)
    output.log(f">>> Current working directory: {Path.cwd()}", level=Verbosity.LITTLE)

    start_time = time.time()
    try:
        config = load_project(
            _resolve_project_file(args.project_dir, args.project_file),
            option_overrides=parse_option_args(args.options),
            build_mode=BuildMode.DEBUG if args.debug else None,
            compiler=args.compiler,
        )

        force = args.force_rebuild
        if config.config_header is not None:
            existed = config.config_header.exists()
            if write_config_header(config.config_header, config.render_header()) and existed and not force:
                # Every unit force-includes the header, so every object is affected
                output.log_warning("Build configuration changed; rebuilding all units")
                force = True

        if args.clear_cache:
            config.project.clear_caches(config.defaults)

        if args.targets:
            config.project.build_targets(args.targets, config.defaults, force=force, progress=args.progress)
        else:
            config.project.build(config.defaults, force=force, progress=args.progress)

    except CyclicDependencyError as e:
        output.log_error(str(e))
        sys.exit(1)

    except ConfigurationError as e:
        output.log_error(f"Configuration error: {e}")
        sys.exit(1)

    except ToolInvocationError as e:
        output.log_error(e.format())
        sys.exit(1)

    except OSError as e:
        output.log_error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        output.log_warning("Build interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    output.log_success("✓ Build successful!")
    output.log_build_complete(time.time() - start_time)
    sys.exit(0)


def clean_command(args: CleanArgs) -> None:
    """Delete caches, object files, and targets of every unit.

    Examples:
        cbuild clean                   # Clean ./cbuild.ini
        cbuild clean path/to/project   # Clean another project
    """
    output.init_timer()
    output.set_verbosity(args.verbosity)
    setup_logging(args.verbosity)

    try:
        config = load_project(_resolve_project_file(args.project_dir, args.project_file))
        removed = config.project.clean(config.defaults)
    except ConfigurationError as e:
        output.log_error(f"Configuration error: {e}")
        sys.exit(1)
    except OSError as e:
        output.log_error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    output.log_success(f"✓ Clean complete ({len(removed)} files removed)")
    sys.exit(0)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="project_file",
        type=Path,
        default=None,
        help=f"Project file, relative to the project directory (default: {DEFAULT_PROJECT_FILE})",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v",
        "--verbose",
        dest="verbosity",
        action="store_const",
        const=int(Verbosity.DETAILED),
        help="Show unit settings and generated command lines",
    )
    verbosity.add_argument(
        "-q",
        "--quiet",
        dest="verbosity",
        action="store_const",
        const=int(Verbosity.MINIMAL),
        help="Only show start, success, and error messages",
    )
    verbosity.add_argument(
        "--verbosity",
        dest="verbosity",
        type=int,
        choices=range(0, 6),
        metavar="N",
        help="Output tier from 0 (silence) to 5 (debug); default 3",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the `cbuild` command."""
    parser = argparse.ArgumentParser(
        prog="cbuild",
        description="cbuild - incremental build orchestrator for C/C++ projects",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build the project's units",
    )
    _add_common_arguments(build_parser)
    build_parser.add_argument(
        "-o",
        "--option",
        dest="options",
        action="append",
        default=[],
        metavar="NAME[=VALUE]",
        help="Enable a build option or set its value (repeatable)",
    )
    build_parser.add_argument(
        "--debug",
        action="store_true",
        help="Build every unit in debug mode",
    )
    build_parser.add_argument(
        "--compiler",
        default=None,
        help="Compiler used by units that do not set one",
    )
    build_parser.add_argument(
        "-t",
        "--target",
        dest="targets",
        action="append",
        default=[],
        metavar="UNIT",
        help="Build only this unit and its dependencies (repeatable)",
    )
    build_parser.add_argument(
        "--force-rebuild",
        action="store_true",
        help="Ignore caches and rebuild every unit from scratch",
    )
    build_parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Delete every unit cache before building",
    )
    build_parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar while compiling",
    )

    # Clean command
    clean_parser = subparsers.add_parser(
        "clean",
        help="Delete caches, object files, and targets",
    )
    _add_common_arguments(clean_parser)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    # Validate project directory exists
    if not parsed_args.project_dir.exists():
        print(f"\033[1;31m✗ Error: Path does not exist: {parsed_args.project_dir}\033[0m")
        sys.exit(2)
    if not parsed_args.project_dir.is_dir():
        print(f"\033[1;31m✗ Error: Path is not a directory: {parsed_args.project_dir}\033[0m")
        sys.exit(2)
    project_file = _resolve_project_file(parsed_args.project_dir, parsed_args.project_file)
    if not project_file.is_file():
        print(f"\033[1;31m✗ Error: Project file not found: {project_file}\033[0m")
        sys.exit(2)

    verbosity = parsed_args.verbosity if parsed_args.verbosity is not None else int(Verbosity.AVERAGE)

    # Execute command
    if parsed_args.command == "build":
        args = BuildArgs(
            project_dir=parsed_args.project_dir,
            project_file=parsed_args.project_file,
            options=parsed_args.options,
            debug=parsed_args.debug,
            compiler=parsed_args.compiler,
            targets=parsed_args.targets,
            force_rebuild=parsed_args.force_rebuild,
            clear_cache=parsed_args.clear_cache,
            verbosity=verbosity,
            progress=parsed_args.progress,
        )
        build_command(args)
    elif parsed_args.command == "clean":
        clean_args = CleanArgs(
            project_dir=parsed_args.project_dir,
            project_file=parsed_args.project_file,
            verbosity=verbosity,
        )
        clean_command(clean_args)


if __name__ == "__main__":
    main()
