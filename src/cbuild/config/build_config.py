"""Build options and the generated configuration header.

Build options work like ./configure switches. A project declares its
options with defaults; the command line overrides them:

    cbuild build -o DEBUG -o USING_BOOST_NET -o SET_COMPILER=g++

``NAME`` enables a boolean option and ``NAME=VALUE`` sets a value option.
The result is written to a configuration header that every unit
force-includes, so sources see the options as preprocessor definitions:

    #pragma once
    ...
    #define USING_BOOST_NET

The header is rewritten only when its content changes.
"""

import logging
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from cbuild import output
from cbuild.errors import ConfigurationError

logger = logging.getLogger(__name__)

OptionValue = Union[bool, str]

# Options consumed by cbuild itself
DEBUG_OPTION = "DEBUG"
COMPILER_OPTION = "SET_COMPILER"

# Never emitted into the header
_TOOL_ONLY_OPTIONS = frozenset({COMPILER_OPTION})

# Options emitted under a different preprocessor name
_DEFINE_ALIASES: dict[str, tuple[str, str]] = {DEBUG_OPTION: ("_DEBUG", "1")}

_TRUE_VALUES = frozenset({"true", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "no", "off"})

HEADER_BANNER = (
    "/*-----------------------------------------------------------------------------\n"
    " * auto generated by cbuild - all changes will be overwritten on build\n"
    " *----------------------------------------------------------------------------*/"
)


def coerce_option_value(raw: str) -> OptionValue:
    """Interpret a declared option value: true/false words become booleans."""
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return raw.strip()


def parse_option_args(args: Sequence[str]) -> dict[str, OptionValue]:
    """Parse ``NAME`` / ``NAME=VALUE`` command-line options.

    Args:
        args: Raw option strings

    Returns:
        Mapping of option name to True (for ``NAME``) or the value, with
        true/false words turned into booleans

    Raises:
        ConfigurationError: If an option has an empty name
    """
    parsed: dict[str, OptionValue] = {}
    for arg in args:
        name, sep, value = arg.partition("=")
        name = name.strip()
        if not name:
            raise ConfigurationError(f"Invalid build option: {arg!r}")
        parsed[name] = coerce_option_value(value) if sep else True
    return parsed


class BuildOptions:
    """Declared build options merged with command-line overrides.

    Usage:
        options = BuildOptions({"DEBUG": False, "SET_COMPILER": "clang++"})
        options.apply(parse_option_args(["DEBUG"]))
        options.is_enabled("DEBUG")      # True
        options.value("SET_COMPILER")    # "clang++"
    """

    def __init__(self, declared: Optional[Mapping[str, OptionValue]] = None):
        self._declared = dict(declared or {})
        self._values: dict[str, OptionValue] = dict(self._declared)

    def apply(self, overrides: Mapping[str, OptionValue]) -> None:
        """Apply command-line overrides.

        Options the project does not declare are kept, with a warning, so a
        typo never silently disappears.
        """
        for name, value in overrides.items():
            if name not in self._declared:
                output.log_warning(f"Unknown build option: {name}")
            logger.debug(f"Build option {name} = {value!r}")
            self._values[name] = value

    def is_enabled(self, name: str) -> bool:
        """True if the option is on (a boolean True or a non-empty value)."""
        value = self._values.get(name, False)
        if isinstance(value, bool):
            return value
        return bool(value)

    def value(self, name: str) -> Optional[str]:
        """Value of a value option, or None if unset or boolean."""
        value = self._values.get(name)
        if isinstance(value, bool):
            return None
        return value

    def as_dict(self) -> dict[str, OptionValue]:
        return dict(self._values)

    def enabled(self) -> list[str]:
        """Names of every enabled option, in declaration order."""
        return [name for name in self._values if self.is_enabled(name)]


def render_config_header(options: BuildOptions, conflicts: Optional[Mapping[str, Sequence[str]]] = None) -> str:
    """Render the configuration header for a set of options.

    Args:
        options: Effective build options
        conflicts: Groups of mutually exclusive options, keyed by group name

    Returns:
        Header text, newline-terminated
    """
    lines = ["#pragma once", "", HEADER_BANNER, ""]

    for name, value in options.as_dict().items():
        if name in _TOOL_ONLY_OPTIONS or value is False or value == "":
            continue
        if name in _DEFINE_ALIASES:
            alias, alias_value = _DEFINE_ALIASES[name]
            lines.append(f"#define {alias} {alias_value}")
        elif value is True:
            lines.append(f"#define {name}")
        else:
            lines.append(f"#define {name} {value}")

    if conflicts:
        lines.extend(
            [
                "",
                "/*-----------------------------------------------------------------------------",
                " * definition conflict checker",
                " *----------------------------------------------------------------------------*/",
                "",
            ]
        )
        for group, names in conflicts.items():
            if len(names) < 2:
                continue
            test = " + ".join(f"defined({name})" for name in names)
            lines.append(f"#if ({test}) > 1")
            lines.append(f'#\terror "{group}: only one of {", ".join(names)} can be enabled"')
            lines.append("#endif")

    lines.append("")
    return "\n".join(lines)


def find_conflicts(options: BuildOptions, conflicts: Mapping[str, Sequence[str]]) -> list[str]:
    """Return a message for each conflict group with more than one option on."""
    messages = []
    for group, names in conflicts.items():
        active = [name for name in names if options.is_enabled(name)]
        if len(active) > 1:
            messages.append(f"{group}: only one of {', '.join(names)} can be enabled (got {', '.join(active)})")
    return messages


def write_config_header(path: Union[str, Path], content: str) -> bool:
    """Write the configuration header if its content changed.

    Args:
        path: Header file path
        content: Rendered header

    Returns:
        True if the file was (re)written, False if it was already current
    """
    header_path = Path(path)
    if header_path.is_file() and header_path.read_text(encoding="utf-8") == content:
        logger.debug(f"Configuration header {header_path} unchanged")
        return False

    header_path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = header_path.with_name(header_path.name + ".tmp")
    temp_file.write_text(content, encoding="utf-8")
    temp_file.replace(header_path)
    output.log(f"==> Writing build configuration to '{header_path}'", level=output.Verbosity.LITTLE)
    return True
