"""Shell command execution for verification checks.

The pipeline talks to external tools only through a CommandExecutor:
an async callable that returns captured output on success and raises
CommandError (carrying stdout/stderr) on a non-zero exit.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from tideflow.core.errors import TideflowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutput:
    """Captured output of a successful command."""

    stdout: str
    stderr: str


class CommandError(TideflowError):
    """Raised when a command exits non-zero (or cannot run).

    Attributes:
        command: The command line that failed
        stdout: Captured standard output
        stderr: Captured standard error
        returncode: Process exit code, None if the process never ran
    """

    def __init__(
        self,
        command: str,
        message: str,
        stdout: str = "",
        stderr: str = "",
        returncode: Optional[int] = None,
    ):
        self.command = command
        self.message = message
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(message)


class CommandExecutor(Protocol):
    """Runs a shell command in a working directory."""

    async def __call__(self, command: str, cwd: Union[str, Path]) -> CommandOutput: ...


class SubprocessExecutor:
    """Default CommandExecutor backed by asyncio subprocesses.

    Args:
        timeout: Seconds to wait before killing the process. None waits forever.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def __call__(self, command: str, cwd: Union[str, Path]) -> CommandOutput:
        logger.debug(f"Running command: {command} (cwd={cwd})")

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except OSError as e:
            raise CommandError(command, f"Command failed to start: {command}: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandError(
                command,
                f"Command timed out after {self.timeout}s: {command}",
                returncode=proc.returncode,
            )

        stdout = stdout_bytes.decode(errors="replace")
        stderr = stderr_bytes.decode(errors="replace")

        if proc.returncode != 0:
            raise CommandError(
                command,
                f"Command failed with exit code {proc.returncode}: {command}",
                stdout=stdout,
                stderr=stderr,
                returncode=proc.returncode,
            )

        return CommandOutput(stdout=stdout, stderr=stderr)
