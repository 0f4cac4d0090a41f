"""Build mode and build type definitions.

Design:
    A unit is built either in debug or release mode, and produces exactly
    one kind of artifact: an executable, a shared library, or a static
    library. Both are plain enums whose values match the strings used in
    cbuild.ini, so a project file can say ``build_type = shared-library``.
"""

from enum import Enum
from typing import Union

from cbuild.errors import ConfigurationError


class BuildMode(Enum):
    """Build mode enum for type-safe mode selection."""

    DEBUG = "debug"
    RELEASE = "release"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value


class BuildType(Enum):
    """Kind of artifact a unit produces."""

    EXECUTABLE = "executable"
    SHARED_LIBRARY = "shared-library"
    STATIC_LIBRARY = "static-library"

    def __str__(self) -> str:
        return self.value

    def target_filename(self, target_file: str) -> str:
        """Name of the artifact on disk.

        Executables use the target file name as-is; libraries follow the
        usual ``lib<name>.so`` / ``lib<name>.a`` convention.

        Args:
            target_file: Bare target name (e.g. "api")

        Returns:
            File name of the artifact (e.g. "libapi.so")
        """
        if self is BuildType.SHARED_LIBRARY:
            return f"lib{target_file}.so"
        if self is BuildType.STATIC_LIBRARY:
            return f"lib{target_file}.a"
        return target_file

    @property
    def is_linked(self) -> bool:
        """True when the artifact is produced by the linker, not the archiver."""
        return self is not BuildType.STATIC_LIBRARY


def parse_build_mode(value: Union[str, BuildMode, None]) -> BuildMode:
    """Convert a string (or enum) into a BuildMode.

    Args:
        value: "debug", "release", or a BuildMode

    Returns:
        The matching BuildMode

    Raises:
        ConfigurationError: If the value is not a valid build mode
    """
    if isinstance(value, BuildMode):
        return value
    try:
        return BuildMode(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in BuildMode)
        raise ConfigurationError(f"Invalid build mode: {value!r} (expected one of: {valid})") from None


def parse_build_type(value: Union[str, BuildType, None]) -> BuildType:
    """Convert a string (or enum) into a BuildType.

    Args:
        value: "executable", "shared-library", "static-library", or a BuildType

    Returns:
        The matching BuildType

    Raises:
        ConfigurationError: If the value is not a valid build type
    """
    if isinstance(value, BuildType):
        return value
    try:
        return BuildType(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(t.value for t in BuildType)
        raise ConfigurationError(f"Invalid build type: {value!r} (expected one of: {valid})") from None
