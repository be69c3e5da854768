"""Session wiring: channel, controller, watchdog and shell runner per session."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Callable, Coroutine

from config.settings import settings
from termai.agent.controller import AutoRunController
from termai.agent.events import EventChannel, EventType, SessionEvent
from termai.agent.watchdog import Watchdog
from termai.llm.client import ChatClient, ProviderSelector
from termai.tools.dispatcher import ToolDispatcher
from termai.tools.filesystem import LocalFileSystem
from termai.tools.safety import SafetyGate
from termai.tools.shell import TIMEOUT_EXIT_CODE, CommandTimeoutError, ShellExecutor

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """No session exists with the requested id."""


class CommandRunner:
    """
    Executes dispatch requests from a session channel.

    Each command runs in its own task and reports started, output and
    finished events back on the channel. Cancellation goes through a
    per-command event so user and watchdog cancels look the same.
    """

    def __init__(self, channel: EventChannel, executor: ShellExecutor) -> None:
        self._channel = channel
        self._executor = executor
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    @property
    def running(self) -> list[str]:
        return list(self._tasks)

    def start(self, command_id: str, command: str, cwd: str | None = None) -> asyncio.Task:
        """
        Start a command in the background.

        Args:
            command_id: Id from the dispatch request
            command: Shell command to run
            cwd: Working directory override

        Returns:
            The task running the command
        """
        self._cancel_events[command_id] = asyncio.Event()
        task = asyncio.create_task(self._run(command_id, command, cwd))
        self._tasks[command_id] = task
        return task

    def cancel(self, command_id: str) -> bool:
        event = self._cancel_events.get(command_id)
        if event is None:
            logger.debug(f"Cancel for unknown command {command_id}")
            return False
        event.set()
        return True

    async def _run(self, command_id: str, command: str, cwd: str | None) -> None:
        self._channel.publish(EventType.COMMAND_STARTED, command_id=command_id, command=command)

        def on_output(chunk: str) -> None:
            self._channel.publish(EventType.COMMAND_OUTPUT, command_id=command_id, chunk=chunk)

        try:
            result = await self._executor.execute(
                command,
                cwd=Path(cwd) if cwd else None,
                on_output=on_output,
                cancel_event=self._cancel_events[command_id],
            )
            exit_code, output = result.exit_code, result.output
        except CommandTimeoutError as e:
            exit_code = TIMEOUT_EXIT_CODE
            output = f"{e.output}\n{e}".lstrip()
        except Exception as e:
            logger.error(f"Command execution failed: {e}")
            exit_code, output = 1, str(e)
        finally:
            self._tasks.pop(command_id, None)
            self._cancel_events.pop(command_id, None)

        self._channel.publish(
            EventType.COMMAND_FINISHED,
            command_id=command_id,
            command=command,
            exit_code=exit_code,
            output=output,
        )

    async def shutdown(self) -> None:
        for event in self._cancel_events.values():
            event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)


class TerminalSession:
    """One terminal with its auto-run controller, watchdog and runner."""

    def __init__(
        self,
        session_id: str,
        llm: ChatClient,
        executor: ShellExecutor | None = None,
        dispatcher: ToolDispatcher | None = None,
        safety: SafetyGate | None = None,
        cwd: Path | None = None,
    ) -> None:
        self.session_id = session_id
        self.cwd = cwd or settings.project_root
        self.channel = EventChannel(session_id, stream_queue_size=settings.event_queue_size)
        self.runner = CommandRunner(self.channel, executor or ShellExecutor(cwd=self.cwd))
        self.controller = AutoRunController(
            session_id,
            self.channel,
            llm,
            dispatcher=dispatcher or ToolDispatcher(LocalFileSystem(self.cwd)),
            safety=safety,
            cwd=self.cwd,
        )
        self.watchdog = Watchdog(self.channel)
        self._background: set[asyncio.Task] = set()
        self._watchdog_task: asyncio.Task | None = None
        self._unsubscribe = self.channel.subscribe(self._on_event)

    def start(self) -> None:
        """Start the watchdog poll."""
        if self._watchdog_task is None:
            self._watchdog_task = asyncio.create_task(self.watchdog.run())

    def _on_event(self, event: SessionEvent) -> None:
        payload = event.payload
        if event.type == EventType.COMMAND_DISPATCH_REQUEST:
            self.runner.start(payload["command_id"], payload["command"], payload.get("cwd"))
        elif event.type == EventType.CANCEL_COMMAND:
            self.runner.cancel(payload["command_id"])
        elif event.type == EventType.COMMAND_STARTED:
            self._spawn(
                self.controller.on_command_started(payload["command_id"], payload["command"])
            )
        elif event.type == EventType.COMMAND_FINISHED:
            self._spawn(
                self.controller.on_command_finished(
                    payload["command_id"],
                    payload["command"],
                    payload["exit_code"],
                    payload["output"],
                )
            )

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{self.session_id}] Session task failed: {task.exception()}")

    async def wait_idle(self) -> None:
        """Wait until no command or controller callback is in flight."""
        while self._background or self.runner.running:
            pending = list(self._background)
            if self.runner.running:
                await asyncio.sleep(0.01)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Stop the watchdog and any running command, then detach listeners."""
        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            await asyncio.gather(self._watchdog_task, return_exceptions=True)
        await self.runner.shutdown()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self.watchdog.stop()
        self._unsubscribe()
        self.channel.close()
        logger.info(f"Session closed: {self.session_id}")


class SessionManager:
    """Creates, looks up and closes terminal sessions."""

    def __init__(
        self,
        llm_factory: Callable[[], ChatClient] | None = None,
        executor_factory: Callable[[Path], ShellExecutor] | None = None,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            llm_factory: Builds the chat client for a new session
            executor_factory: Builds the shell executor for a new session's cwd
        """
        self._llm_factory = llm_factory or ProviderSelector
        self._executor_factory = executor_factory or (lambda cwd: ShellExecutor(cwd=cwd))
        self._sessions: dict[str, TerminalSession] = {}

    def create(self, cwd: Path | None = None, session_id: str | None = None) -> TerminalSession:
        """
        Create and start a session.

        Args:
            cwd: Working directory (defaults to settings.project_root)
            session_id: Explicit id (defaults to a random one)

        Returns:
            The new session
        """
        session_id = session_id or uuid.uuid4().hex[:12]
        cwd = (cwd or settings.project_root).expanduser().resolve()
        session = TerminalSession(
            session_id,
            self._llm_factory(),
            executor=self._executor_factory(cwd),
            cwd=cwd,
        )
        self._sessions[session_id] = session
        session.start()
        logger.info(f"Session created: {session_id} (cwd={cwd})")
        return session

    def get(self, session_id: str) -> TerminalSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id)

    def list_ids(self) -> list[str]:
        return list(self._sessions)

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        await session.close()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
