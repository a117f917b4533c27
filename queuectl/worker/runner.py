"""
Command runner.

Spawns a job's shell command as a subprocess, captures its output, and
enforces an optional timeout. Commands may be executed more than once
(retries, stale lock recovery), so they should be idempotent.
"""

import asyncio
import logging
import os
import signal
import time

from queuectl.constants import EXIT_CODE_SPAWN_FAILED, EXIT_CODE_TIMEOUT
from queuectl.types.job import CommandResult

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs shell commands with asyncio subprocesses.

    Failures are returned as data: a nonzero exit, a timeout or a spawn
    error all produce ``CommandResult(success=False, ...)``.
    """

    def __init__(self, encoding: str = "utf-8"):
        """
        Initialize the runner.

        Args:
            encoding: Encoding used to decode captured output.
        """
        self.encoding = encoding

    async def execute(self, command: str, timeout_seconds: float = 0) -> CommandResult:
        """
        Execute a command through the shell.

        Args:
            command: Shell command line.
            timeout_seconds: Kill the command after this many seconds.
                0 disables the timeout.

        Returns:
            CommandResult describing the run.
        """
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(
                "Failed to spawn command",
                extra={"command": command, "error": str(e)}
            )
            return CommandResult(
                success=False,
                exit_code=EXIT_CODE_SPAWN_FAILED,
                error=f"Failed to spawn command: {e}",
                duration_ms=_elapsed_ms(start_time),
            )

        try:
            if timeout_seconds and timeout_seconds > 0:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=timeout_seconds
                )
            else:
                stdout, stderr = await process.communicate()
        except TimeoutError:
            _kill_process_group(process)
            stdout, stderr = await process.communicate()
            logger.warning(
                f"Command timed out after {timeout_seconds}s",
                extra={"command": command}
            )
            return CommandResult(
                success=False,
                exit_code=EXIT_CODE_TIMEOUT,
                stdout=self._decode(stdout),
                stderr=self._decode(stderr),
                error=f"Command timed out after {timeout_seconds}s",
                duration_ms=_elapsed_ms(start_time),
            )

        exit_code = process.returncode if process.returncode is not None else 1

        return CommandResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            duration_ms=_elapsed_ms(start_time),
        )

    def _decode(self, data: bytes | None) -> str:
        if not data:
            return ""
        return data.decode(self.encoding, errors="replace")


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    # The shell runs in its own session, so its children share its process group
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _elapsed_ms(start_time: float) -> float:
    return (time.monotonic() - start_time) * 1000
