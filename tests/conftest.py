"""Pytest configuration and fixtures for cbuild tests.

This conftest addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439

It also provides a fake toolchain so build tests never need a real compiler.
"""

import io
import subprocess
import sys
import warnings
from pathlib import Path
from typing import Optional

import pytest

from cbuild import output
from cbuild.build.build_context import BuildDefaults
from cbuild.build.build_profiles import BuildMode

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    # Restore if they were closed during the test
    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _reset_output():  # noqa: PT004
    """Reset the console reporter's global state around each test."""
    output._output_stream = sys.stdout
    output._console = None
    output.set_verbosity(output.Verbosity.AVERAGE)
    output.set_output_file(None)
    yield
    output._output_stream = sys.stdout
    output._console = None
    output.set_verbosity(output.Verbosity.AVERAGE)
    output.set_output_file(None)


@pytest.fixture
def console():
    """Capture console reporter output in a StringIO."""
    stream = io.StringIO()
    output.init_timer(stream)
    return stream


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    # After test execution, ensure streams aren't closed
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    # Final restoration after teardown
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


def _strip_comments(text: str) -> str:
    lines = [line.split("//")[0].rstrip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class FakeToolchain:
    """Stands in for safe_run: records commands and writes fake artifacts.

    Objects contain the source with comments stripped, so a comment-only
    edit produces a byte-identical object. Links and archives concatenate
    their objects.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_on: Optional[str] = None

    def __call__(self, cmd: list[str], **kwargs) -> subprocess.CompletedProcess:
        cmd = list(cmd)
        self.calls.append(cmd)

        if self.fail_on is not None and any(self.fail_on in part for part in cmd):
            return subprocess.CompletedProcess(cmd, 1, "", "error: simulated failure\n")

        if "-c" in cmd:
            obj = Path(cmd[cmd.index("-o") + 1])
            src = Path(cmd[-1])
            if not src.is_file():
                return subprocess.CompletedProcess(cmd, 1, "", f"error: {src}: No such file or directory\n")
            obj.write_text("OBJ\n" + _strip_comments(src.read_text()))
        elif len(cmd) > 2 and cmd[1] == "rcs":
            Path(cmd[2]).write_text("".join(Path(o).read_text() for o in cmd[3:]))
        else:
            target = Path(cmd[cmd.index("-o") + 1])
            objects = [Path(part) for part in cmd if part.endswith(".o")]
            target.write_text("BIN\n" + "".join(o.read_text() for o in objects))

        return subprocess.CompletedProcess(cmd, 0, "", "")

    @property
    def compile_calls(self) -> list[list[str]]:
        return [cmd for cmd in self.calls if "-c" in cmd]

    @property
    def link_calls(self) -> list[list[str]]:
        return [cmd for cmd in self.calls if "-c" not in cmd]

    def compiled_sources(self) -> list[str]:
        return [Path(cmd[-1]).name for cmd in self.compile_calls]

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def fake_toolchain(monkeypatch):
    """Route every tool invocation through a FakeToolchain."""
    toolchain = FakeToolchain()
    monkeypatch.setattr("cbuild.subprocess_utils.safe_run", toolchain)
    return toolchain


@pytest.fixture
def defaults(tmp_path):
    """Project defaults rooted in the test's temporary directory."""
    return BuildDefaults(
        compiler="cc",
        object_destination=tmp_path / "obj",
        build_mode=BuildMode.RELEASE,
        cache_dir=tmp_path / "cache",
    )
