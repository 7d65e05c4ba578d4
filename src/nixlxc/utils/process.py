"""Subprocess helpers for driving host tools."""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[float] = None,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously.

    With ``capture_output=False`` the child inherits the caller's stdio,
    which is what interactive sessions need.
    """
    logger.debug(f"Running command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
        **kwargs
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise subprocess.TimeoutExpired(cmd, timeout)
    except asyncio.CancelledError:
        # Do not leave the child running when the attempt is interrupted
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    result = CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )

    if check and process.returncode != 0:
        error = subprocess.CalledProcessError(
            process.returncode, cmd
        )
        error.stdout = result.stdout
        error.stderr = result.stderr
        raise error

    return result


def describe_failure(error: BaseException) -> str:
    """Short human-readable detail for a failed command."""
    stderr = getattr(error, "stderr", None)
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors="replace")
    if stderr and stderr.strip():
        return stderr.strip().splitlines()[-1]
    return str(error)
