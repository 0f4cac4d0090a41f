"""Exception types raised by cbuild.

Cache misses and missing files are never errors; they surface as boolean
"not up to date" results. Everything here is fatal for the current build.
"""

from typing import Optional, Sequence


class CBuildError(Exception):
    """Base class for all cbuild failures."""

    pass


class ConfigurationError(CBuildError):
    """Raised when a unit, project, or project file is misconfigured."""

    pass


class CyclicDependencyError(ConfigurationError):
    """Raised when unit dependencies form a cycle."""

    pass


class ToolInvocationError(CBuildError):
    """Raised when a compiler, linker, or archiver exits non-zero.

    Attributes:
        cmd: The command line that was executed
        returncode: Exit status of the tool
        stdout: Captured standard output (may be empty)
        stderr: Captured standard error (may be empty)
    """

    def __init__(
        self,
        message: str,
        cmd: Sequence[str],
        returncode: int,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""

    def format(self) -> str:
        """Format the failure with the command that was run.

        The tool's own output is not repeated; run_tool() has already
        passed it through to the terminal.

        Returns:
            Multi-line human-readable description
        """
        return "\n".join([str(self), f"  Command: {' '.join(self.cmd)}", f"  Exit status: {self.returncode}"])
