"""
Centralized console output for cbuild.

All user-facing progress goes through this module. Output is prefixed with
the time elapsed since program launch in MM:SS.cc format and filtered by a
verbosity tier, from silence to debug spam. Diagnostics that only matter to
developers go through the standard logging module instead.

Verbosity tiers (each includes everything below it):
    5 - DEBUG     very spammy; checksums, old and new cache contents
    4 - DETAILED  unit settings, generated command lines, cache contents
    3 - AVERAGE   (default) files up to date / not up to date, cache saves
    2 - LITTLE    unit headers, link and archive steps
    1 - MINIMAL   project start, dependency builds, success lines, errors
    0 - SILENCE   nothing but the compiler's own output

Example output:
    00:00.01 ==> Building project: demo
    00:00.02 >>> Processing unit: app
    00:00.35       main.cc is not up to date
    00:01.12       app built successfully

Usage:
    from cbuild.output import Verbosity, log, log_detail, set_verbosity

    set_verbosity(Verbosity.DETAILED)
    log("Building project: demo", level=Verbosity.MINIMAL)
    log_detail("main.cc is up to date")
"""

import sys
import time
from enum import IntEnum
from types import TracebackType
from typing import Optional, Sequence, TextIO

from rich.console import Console
from rich.text import Text


class Verbosity(IntEnum):
    """Console verbosity tiers."""

    SILENCE = 0
    MINIMAL = 1
    LITTLE = 2
    AVERAGE = 3
    DETAILED = 4
    DEBUG = 5


# Global state for the reporter
_start_time: Optional[float] = None
_output_stream: TextIO = sys.stdout
_console: Optional[Console] = None
_verbosity: Verbosity = Verbosity.AVERAGE
_output_file: Optional[TextIO] = None


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Start the build clock and optionally redirect console output.

    The CLI calls this once per command; the first message printed starts
    the clock if nobody did.

    Args:
        output_stream: Stream receiving console output (keeps the current
            stream when None)
    """
    global _start_time, _output_stream, _console
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream
        _console = None


def set_verbosity(verbosity: int) -> None:
    """
    Set the console verbosity tier.

    Args:
        verbosity: A Verbosity member or an int between 0 and 5 (clamped)
    """
    global _verbosity
    _verbosity = Verbosity(max(Verbosity.SILENCE, min(Verbosity.DEBUG, int(verbosity))))


def get_verbosity() -> Verbosity:
    """Return the current verbosity tier."""
    return _verbosity


def is_enabled(level: int) -> bool:
    """Check whether messages of the given tier are currently printed."""
    return level != Verbosity.SILENCE and _verbosity >= level


def set_output_file(output_file: Optional[TextIO]) -> None:
    """
    Set a file to receive all log output (in addition to the console).

    Args:
        output_file: File object to receive output, or None to disable file output
    """
    global _output_file
    _output_file = output_file


def get_output_file() -> Optional[TextIO]:
    """Get the current output file, or None if not set."""
    return _output_file


def get_elapsed() -> float:
    """Seconds since init_timer()."""
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """Elapsed build time as MM:SS.cc, the prefix of every console line."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _get_console() -> Console:
    """Return the rich console bound to the current output stream."""
    global _console
    if _console is None or _console.file is not _output_stream:
        _console = Console(file=_output_stream, highlight=False, soft_wrap=True)
    return _console


def _print(message: str, style: Optional[str] = None) -> None:
    """Print one timestamped line to the console and the mirror file."""
    timestamp = format_timestamp()
    line = Text(f"{timestamp} ")
    line.append(message, style=style)
    console = _get_console()
    console.print(line)
    console.file.flush()

    # Also write to output file if set, without styling
    if _output_file is not None:
        _output_file.write(f"{timestamp} {message}\n")
        _output_file.flush()


def log(message: str, level: int = Verbosity.AVERAGE, style: Optional[str] = None) -> None:
    """
    Print a message if the current verbosity reaches its tier.

    Args:
        message: Message to log
        level: Verbosity tier required to print the message
        style: Optional rich style (e.g. "bold", "yellow")
    """
    if not is_enabled(level):
        return
    _print(message, style)


def log_phase(phase: int, total: int, message: str, level: int = Verbosity.LITTLE) -> None:
    """
    Print a numbered step of a longer operation.

    Format: [N/M] message

    Args:
        phase: Current phase number
        total: Total number of phases
        message: Phase description
        level: Verbosity tier required to print the message
    """
    if not is_enabled(level):
        return
    _print(f"[{phase}/{total}] {message}", "bold")


def log_detail(message: str, indent: int = 6, level: int = Verbosity.AVERAGE, style: Optional[str] = None) -> None:
    """
    Print an indented message (per-file verdicts, cache updates).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        level: Verbosity tier required to print the message
        style: Optional rich style
    """
    if not is_enabled(level):
        return
    _print(f"{' ' * indent}{message}", style)


def log_file(filename: str, up_to_date: bool, level: int = Verbosity.AVERAGE) -> None:
    """
    Log the staleness verdict for one file.

    Format: name is [not] up to date

    Args:
        filename: Name of the file (basename is enough)
        up_to_date: Verdict to report
        level: Verbosity tier required to print the message
    """
    if not is_enabled(level):
        return
    if up_to_date:
        _print(f"      {filename} is up to date")
    else:
        _print(f"      {filename} is not up to date", "yellow")


def log_command(cmd: Sequence[str], level: int = Verbosity.DETAILED) -> None:
    """
    Log a generated tool command line.

    Args:
        cmd: Command and arguments
        level: Verbosity tier required to print the message
    """
    if not is_enabled(level):
        return
    _print(">>> Generated command line:")
    _print(f"      {' '.join(cmd)}", "bold yellow")


def log_header(title: str, version: str) -> None:
    """
    Print the program banner.

    Args:
        title: Program title
        version: Version string
    """
    if not is_enabled(Verbosity.MINIMAL):
        return
    _print(f"{title} v{version}", "bold")
    _print("")


def log_build_complete(build_time: float, level: int = Verbosity.MINIMAL) -> None:
    """
    Print the total wall-clock time of the build.

    Args:
        build_time: Total build time in seconds
        level: Verbosity tier required to print the message
    """
    if not is_enabled(level):
        return
    _print("")
    _print(f"Build time: {build_time:.2f}s")


def log_error(message: str) -> None:
    """
    Log an error message.

    Errors are shown at every tier except SILENCE.

    Args:
        message: Error message
    """
    if not is_enabled(Verbosity.MINIMAL):
        return
    _print(f"ERROR: {message}", "bold red")


def log_warning(message: str) -> None:
    """
    Log a warning message.

    Args:
        message: Warning message
    """
    if not is_enabled(Verbosity.MINIMAL):
        return
    _print(f"WARNING: {message}", "yellow")


def log_success(message: str) -> None:
    """
    Log a success message.

    Args:
        message: Success message
    """
    if not is_enabled(Verbosity.MINIMAL):
        return
    _print(message, "bold green")


class TimedLogger:
    """
    Context manager that reports how long a link or archive step took.

    Usage:
        with TimedLogger("Linking app") as logger:
            # Do linking
            logger.detail("3 object files")
        # Prints "Done (0.42s)" on success
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, level: int = Verbosity.LITTLE):
        """
        Initialize timed logger.

        Args:
            operation: Description of the operation
            phase: Optional (current, total) phase numbers
            level: Verbosity tier required to print the messages
        """
        self.operation = operation
        self.phase = phase
        self.level = level
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...", self.level)
        else:
            log(f"{self.operation}...", self.level)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)", level=self.level)
        return None

    def detail(self, message: str) -> None:
        """Print an indented line at this operation's tier."""
        log_detail(message, level=self.level)

    def log(self, message: str) -> None:
        """Print a line at this operation's tier."""
        log(message, self.level)
