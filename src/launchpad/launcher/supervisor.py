"""Launch supervisor: start the bundled executable and wait for it.

The launcher spawns the application as a child process and blocks until it
exits, then reports the child's exit code. The launcher never exits before
the spawn call has returned a running process.
"""

import asyncio
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from launchpad.errors import SpawnFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LaunchOutcome:
    """Result of running the application."""

    exit_code: int
    child_pid: int


def default_executable_name(path: Path | str, platform_name: str) -> Path:
    """Apply the platform's executable naming convention to ``path``.

    On Windows a path without a suffix gets ``.exe`` appended.
    """
    path = Path(path)
    if platform_name == "windows" and not path.suffix:
        return path.with_suffix(".exe")
    return path


def _check_executable(path: Path) -> None:
    if not path.exists():
        raise SpawnFailed(path, "file not found")
    if not path.is_file():
        raise SpawnFailed(path, "not a file")
    if os.name != "nt" and not os.access(path, os.X_OK):
        raise SpawnFailed(path, "file is not executable")


async def launch(
    executable_path: Path | str,
    args: Sequence[str] = (),
    cwd: Path | None = None,
) -> LaunchOutcome:
    """Spawn ``executable_path`` and wait for it to exit.

    Args:
        executable_path: Program to run
        args: Arguments passed through to the program
        cwd: Working directory for the program; defaults to the launcher's

    Returns:
        LaunchOutcome with the child's exit code and pid

    Raises:
        SpawnFailed: If the program is missing, not executable, or fails to start
    """
    path = Path(executable_path).absolute()
    _check_executable(path)

    try:
        process = await asyncio.create_subprocess_exec(
            str(path),
            *args,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as err:
        raise SpawnFailed(path, err.strerror or str(err)) from err

    logger.info(f"Launched {path.name} (pid {process.pid})")
    exit_code = await process.wait()
    logger.debug(f"{path.name} exited with code {exit_code}")

    return LaunchOutcome(exit_code=exit_code, child_pid=process.pid)
