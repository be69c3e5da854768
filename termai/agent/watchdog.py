"""Time-based liveness monitor for a session's running command and LLM call."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from termai.agent.events import EventChannel, EventType, SessionEvent

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0
COMMAND_STALL_SECONDS = 30.0
INTERVENTION_SECONDS = 35.0
AI_STALL_SECONDS = 45.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    BUSY = "busy"
    STALLED = "stalled"


@dataclass
class WatchdogReport:
    """Outcome of one watchdog poll."""

    status: HealthStatus
    command_stalled: bool = False
    ai_stalled: bool = False
    intervened: bool = False


@dataclass
class _RunningCommand:
    command_id: str
    command: str
    started_at: float
    last_activity: float


class Watchdog:
    """
    Polls a session for stalled commands and stalled LLM calls.

    The watchdog only observes the session channel and publishes onto it;
    it never waits on the auto-run controller. Every running command is
    tracked on its own: one with no output for 30s (and running for 30s)
    is reported stalled and is cancelled once it has run for 35s. An LLM
    call thinking for 45s is reported but never cancelled.
    """

    def __init__(
        self,
        channel: EventChannel,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        """
        Initialize the watchdog and subscribe it to the channel.

        Args:
            channel: Session event channel to observe and publish on
            clock: Monotonic time source in seconds
            poll_interval: Seconds between polls in run()
        """
        self._channel = channel
        self._clock = clock
        self._poll_interval = poll_interval
        self._status = HealthStatus.HEALTHY
        self._running: dict[str, _RunningCommand] = {}
        self._thinking_since: float | None = None
        self._reported: set[str] = set()
        self._reported_ai = False
        self._intervened: set[str] = set()
        self._unsubscribe = channel.subscribe(self._on_event)

    @property
    def status(self) -> HealthStatus:
        return self._status

    @property
    def running_command_ids(self) -> list[str]:
        """Ids of the running commands, oldest first."""
        return list(self._running)

    @property
    def running_command_id(self) -> str | None:
        """Id of the most recently started command still running."""
        return next(reversed(self._running), None)

    @property
    def ai_thinking(self) -> bool:
        return self._thinking_since is not None

    def _settle_status(self) -> None:
        busy = bool(self._running) or self._thinking_since is not None
        self._status = HealthStatus.BUSY if busy else HealthStatus.HEALTHY

    def _on_event(self, event: SessionEvent) -> None:
        now = self._clock()
        command_id = event.payload.get("command_id")
        if event.type == EventType.COMMAND_STARTED:
            self._running[command_id] = _RunningCommand(
                command_id=command_id,
                command=event.payload.get("command", ""),
                started_at=now,
                last_activity=now,
            )
            self._settle_status()
        elif event.type == EventType.COMMAND_OUTPUT:
            running = self._running.get(command_id)
            if running is not None:
                running.last_activity = now
            if self._status == HealthStatus.STALLED:
                self._settle_status()
        elif event.type == EventType.COMMAND_FINISHED:
            self._running.pop(command_id, None)
            self._reported.discard(command_id)
            self._intervened.discard(command_id)
            self._settle_status()
        elif event.type == EventType.AI_THINKING:
            if event.payload.get("thinking"):
                self._thinking_since = now
            else:
                self._thinking_since = None
                self._reported_ai = False
            self._settle_status()

    def check(self, now: float | None = None) -> WatchdogReport:
        """
        Run one poll.

        Args:
            now: Current clock reading (defaults to the injected clock)

        Returns:
            WatchdogReport describing what was found and done
        """
        now = self._clock() if now is None else now
        report = WatchdogReport(status=self._status)

        # Cancelling may finish a command synchronously
        for running in list(self._running.values()):
            run_duration = now - running.started_at
            since_activity = now - running.last_activity
            if run_duration <= COMMAND_STALL_SECONDS or since_activity <= COMMAND_STALL_SECONDS:
                continue

            report.command_stalled = True
            self._status = HealthStatus.STALLED
            if running.command_id not in self._reported:
                self._reported.add(running.command_id)
                logger.warning(f"[{self._channel.session_id}] Command stalled: {running.command}")
                self._channel.publish(
                    EventType.STALL_SUSPECTED,
                    target="command",
                    command_id=running.command_id,
                    run_duration=run_duration,
                    since_activity=since_activity,
                )

            if run_duration > INTERVENTION_SECONDS and running.command_id not in self._intervened:
                if self.intervene(reason="auto", command_id=running.command_id):
                    report.intervened = True

        if self._thinking_since is not None:
            think_duration = now - self._thinking_since
            if think_duration > AI_STALL_SECONDS:
                report.ai_stalled = True
                self._status = HealthStatus.STALLED
                if not self._reported_ai:
                    self._reported_ai = True
                    logger.warning(f"[{self._channel.session_id}] AI stalled for {think_duration:.0f}s")
                    self._channel.publish(
                        EventType.STALL_SUSPECTED,
                        target="ai",
                        think_duration=think_duration,
                    )

        report.status = self._status
        return report

    def intervene(self, reason: str = "manual", command_id: str | None = None) -> bool:
        """
        Cancel running commands and reset the LLM-thinking flag.

        Args:
            reason: "manual" for a user request, "auto" for the stall timer
            command_id: Command to cancel (defaults to every running command)

        Returns:
            True if anything was cancelled or reset
        """
        if command_id is None:
            targets = list(self._running)
        else:
            targets = [command_id] if command_id in self._running else []

        for target in targets:
            self._intervened.add(target)
            self._channel.publish(EventType.CANCEL_COMMAND, command_id=target, reason="watchdog")

        reset_ai = self._thinking_since is not None
        self._thinking_since = None
        self._reported_ai = False

        if not targets and not reset_ai:
            return False

        logger.info(
            f"[{self._channel.session_id}] Intervention ({reason}): "
            f"cancelled={targets}, ai_reset={reset_ai}"
        )
        self._settle_status()
        self._channel.publish(
            EventType.INTERVENTION_PERFORMED,
            reason=reason,
            command_ids=targets,
            ai_reset=reset_ai,
        )
        return True

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.debug(f"[{self._channel.session_id}] Watchdog started")
        try:
            while True:
                await asyncio.sleep(self._poll_interval)
                self.check()
        finally:
            logger.debug(f"[{self._channel.session_id}] Watchdog stopped")

    def stop(self) -> None:
        self._unsubscribe()
