"""Asynchronous shell command execution with streaming output."""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from config.settings import settings

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

# Exit codes reported for a command killed by cancel or by its timeout.
CANCELLED_EXIT_CODE = 130
TIMEOUT_EXIT_CODE = 124


class CommandTimeoutError(Exception):
    """A command exceeded its time limit and was killed."""

    def __init__(self, command: str, timeout: float, output: str = "") -> None:
        super().__init__(f"Command timed out after {timeout} seconds: {command}")
        self.command = command
        self.timeout = timeout
        self.output = output


@dataclass
class CommandResult:
    """Result from shell command execution."""

    command: str
    output: str
    exit_code: int
    duration: float = 0.0
    cancelled: bool = False


class ShellExecutor:
    """
    Runs shell commands as subprocesses of a single shell.

    stdout and stderr are merged, streamed to an optional callback as they
    arrive, and truncated in the returned result.
    """

    READ_CHUNK_SIZE = 4096

    def __init__(
        self,
        cwd: Path | None = None,
        shell: str | None = None,
        timeout: float | None = None,
        max_output_chars: int | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            cwd: Working directory (defaults to settings.project_root)
            shell: Shell executable (defaults to settings.shell_executable)
            timeout: Default timeout in seconds (defaults to settings.shell_timeout)
            max_output_chars: Result output limit (defaults to settings.shell_output_max_chars)
        """
        self._cwd = cwd or settings.project_root
        self._shell = shell or settings.shell_executable
        self._timeout = timeout or settings.shell_timeout
        self._max_output_chars = max_output_chars or settings.shell_output_max_chars

    @property
    def cwd(self) -> Path:
        return self._cwd

    def _sanitize_output(self, output: str) -> str:
        """Truncate command output."""
        if len(output) > self._max_output_chars:
            output = (
                output[: self._max_output_chars]
                + f"\n... (truncated, {len(output)} total chars)"
            )
        return output

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    async def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: float | None = None,
        on_output: OutputCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """
        Execute a command and wait for it to finish.

        Args:
            command: The command to execute
            cwd: Working directory override
            timeout: Timeout override in seconds
            on_output: Called with each decoded output chunk
            cancel_event: Setting this event kills the command

        Returns:
            CommandResult; a cancelled command reports exit code 130

        Raises:
            CommandTimeoutError: If the command outlives its timeout
        """
        timeout = timeout or self._timeout
        started = time.monotonic()
        chunks: list[str] = []

        logger.info(f"Executing command: {command}")
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd or self._cwd),
            executable=self._shell,
            env={**os.environ, "LANG": "C.UTF-8"},
            start_new_session=True,
        )

        async def pump() -> int:
            assert process.stdout is not None
            while True:
                chunk = await process.stdout.read(self.READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = chunk.decode("utf-8", errors="replace")
                chunks.append(text)
                if on_output:
                    on_output(text)
            return await process.wait()

        pump_task = asyncio.create_task(pump())
        waiters: set[asyncio.Task] = {pump_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self._kill(process)
            pump_task.cancel()
            raise
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if pump_task in done:
            exit_code = pump_task.result()
            output = self._sanitize_output("".join(chunks))
            logger.debug(f"Command finished (exit={exit_code}): {command}")
            return CommandResult(
                command=command,
                output=output,
                exit_code=exit_code,
                duration=time.monotonic() - started,
            )

        self._kill(process)
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
        await process.wait()
        output = self._sanitize_output("".join(chunks))

        if cancel_task is not None and cancel_task in done:
            logger.info(f"Command cancelled: {command}")
            return CommandResult(
                command=command,
                output=output,
                exit_code=CANCELLED_EXIT_CODE,
                duration=time.monotonic() - started,
                cancelled=True,
            )

        logger.warning(f"Command timed out after {timeout}s: {command}")
        raise CommandTimeoutError(command, timeout, output)
