"""
Async subprocess execution with a wall-clock limit.

Git, cargo and rustup are all driven through run_command so every external
call carries an explicit timeout. Components take the runner as a
constructor argument, which lets tests substitute a fake.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from crate_docs.errors import OperationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit status and decoded output of a finished command."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    args: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: float = 60.0,
    env: Optional[dict[str, str]] = None,
) -> CommandResult:
    """
    Run a command and capture its output.

    Args:
        args: Program and arguments
        cwd: Working directory
        timeout: Seconds before the process is killed
        env: Extra environment variables layered over os.environ

    Returns:
        CommandResult

    Raises:
        OperationTimeoutError: If the command runs longer than timeout
        FileNotFoundError: If the program is not installed
    """
    args = [str(a) for a in args]
    full_env = None
    if env:
        full_env = {**os.environ, **env}

    logger.debug(f"Running {' '.join(args)} (cwd={cwd}, timeout={timeout}s)")
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd else None,
        env=full_env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise OperationTimeoutError(
            f"Command timed out after {timeout:.0f}s: {' '.join(args[:3])}",
            hint="Increase the timeout in settings if the build is legitimately slow",
        )

    return CommandResult(
        args=args,
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
