"""Subprocess utilities for running compilers, linkers, and archivers.

Every external tool is spawned through safe_run(), which applies
platform-specific flags so no console window flashes up on Windows and the
child cannot steal keystrokes from the terminal. run_tool() adds the
fail-fast contract of the build: one call, one blocking process, and a
ToolInvocationError on any non-zero exit.
"""

import logging
import subprocess
import sys
from typing import Any, Sequence

from cbuild.errors import ToolInvocationError

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Run a tool through subprocess.run with cbuild's process defaults.

    Compilers and linkers never read from the terminal, so stdin is
    DEVNULL unless given; on Windows no console window is opened.

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Note:
        Explicit creationflags are OR'd with the platform defaults; an
        explicit stdin is passed through unchanged.
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.run(cmd, **kwargs)


def run_tool(cmd: Sequence[str], description: str) -> subprocess.CompletedProcess:
    """Run one compile, link, or archive command synchronously.

    The tool's own stdout/stderr (warnings, notes) are passed through to the
    terminal regardless of the cbuild verbosity.

    Args:
        cmd: Full command line, tool first
        description: Short description used in the error message
            (e.g. "Compilation of main.cc")

    Returns:
        CompletedProcess of the successful invocation

    Raises:
        ToolInvocationError: If the tool cannot be started or exits non-zero
    """
    argv = [str(part) for part in cmd]
    logger.debug(f"Running: {' '.join(argv)}")

    try:
        result = safe_run(argv, capture_output=True, text=True)
    except OSError as e:
        raise ToolInvocationError(f"{description} failed: cannot execute {argv[0]}: {e}", argv, 127) from e

    if result.stdout:
        sys.stdout.write(result.stdout)
        sys.stdout.flush()
    if result.stderr:
        sys.stderr.write(result.stderr)
        sys.stderr.flush()

    if result.returncode != 0:
        raise ToolInvocationError(
            f"{description} failed with exit status {result.returncode}",
            argv,
            result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    logger.debug(f"{description} succeeded")
    return result
