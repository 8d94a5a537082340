"""Bounded external-process execution.

Every call spawns one process, collects its output, and guarantees the
process is gone by the time the coroutine returns or raises.
"""

import asyncio
import logging
import os
import shlex
import signal
from dataclasses import dataclass
from typing import Optional, Sequence

from noteforge.errors import ExternalToolError, LaunchError, ToolTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    stdout: str
    stderr: str


def _kill_group(pgid: int) -> None:
    # The tool runs as a session leader; its helpers (soffice.bin behind the
    # libreoffice launcher) share the group and hold the output pipes.
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    _kill_group(proc.pid)
    await proc.wait()


async def run_tool(
    args: Sequence[str],
    timeout: float,
    cwd: Optional[str] = None,
) -> ToolResult:
    """Run ``args`` and wait at most ``timeout`` seconds.

    Raises:
        LaunchError: the binary could not be started.
        ToolTimeoutError: the process outlived ``timeout`` and was killed.
        ExternalToolError: the process exited non-zero.
    """
    binary = args[0]
    logger.debug(f"Running: {shlex.join(args)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as e:
        logger.error(f"Failed to start {binary}: {e}")
        raise LaunchError(binary, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(proc)
        logger.error(f"{binary} killed after {timeout:g}s")
        raise ToolTimeoutError(binary, timeout)
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    _kill_group(proc.pid)
    stderr_text = stderr.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        logger.error(f"{binary} failed with code {proc.returncode}: {stderr_text.strip()}")
        raise ExternalToolError(binary, proc.returncode, stderr_text)

    return ToolResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr_text,
    )
