"""Auto-run control loop for one terminal session."""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from config.settings import settings
from termai.agent.events import EventChannel, EventType
from termai.agent.history import CommandHistoryTracker
from termai.agent.parser import DirectiveKind, ParsedResponse, parse_response
from termai.agent.patterns import ErrorPatternMatcher
from termai.agent.prompts import (
    BUDGET_NOTICE,
    PROVIDER_FAILURE_MESSAGE,
    RESPONSE_LOOP_REASON,
    SAFETY_CANCELLED_MESSAGE,
    STALL_NOTICE,
    build_system_prompt,
    format_output_message,
    format_stuck_message,
)
from termai.agent.state import (
    MAX_AUTO_STEPS,
    MAX_STALLS_BEFORE_ASK,
    MAX_TOOL_ROUNDS,
    STUCK_DETECTION_WINDOW,
    AutoRunState,
    FailureKind,
    LoopPhase,
    PendingSafetyCommand,
    StopReason,
    StuckVerdict,
    TaskStep,
    TaskSummary,
)
from termai.agent.stuck import SIMILAR_COMMAND_SUGGESTIONS, StuckDetector
from termai.agent.summary import build_task_summary
from termai.llm.client import ChatClient, ProviderError
from termai.tools.dispatcher import ToolDispatcher
from termai.tools.safety import SafetyGate

logger = logging.getLogger(__name__)

ORIGIN_AUTO = "auto"
ORIGIN_USER = "user"


class PendingCommandMismatchError(Exception):
    """A safety decision named a pending command that is not awaiting one."""


class AutoRunController:
    """
    Drives the auto-run loop for a single session.

    The controller never runs commands itself. It publishes dispatch
    intents on the session channel and is told about command start and
    completion by the session wiring. Every state transition happens
    under one asyncio.Lock.
    """

    def __init__(
        self,
        session_id: str,
        channel: EventChannel,
        llm: ChatClient,
        dispatcher: ToolDispatcher | None = None,
        safety: SafetyGate | None = None,
        matcher: ErrorPatternMatcher | None = None,
        cwd: Path | None = None,
        os_name: str | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            session_id: Session this controller belongs to
            channel: Session event channel
            llm: Chat client used for every LLM turn
            dispatcher: File tool dispatcher
            safety: Safety gate for proposed commands
            matcher: Error classifier shared with the history tracker
            cwd: Working directory shown in the system prompt
            os_name: Operating system shown in the system prompt
        """
        self.session_id = session_id
        self._channel = channel
        self._llm = llm
        self._dispatcher = dispatcher or ToolDispatcher()
        self._safety = safety or SafetyGate()
        self._matcher = matcher or ErrorPatternMatcher()
        self._history = CommandHistoryTracker(self._matcher)
        self._detector = StuckDetector()
        self._cwd = cwd or settings.project_root
        self._os_name = os_name or settings.os_name

        self._state = AutoRunState()
        self._lock = asyncio.Lock()
        self._context: list[BaseMessage] = []
        self._pending_safety: PendingSafetyCommand | None = None
        self._dispatched: dict[str, str] = {}

        self._consecutive_stalls = 0
        self._tool_rounds = 0
        self._last_response: str | None = None

        self._task_steps: list[TaskStep] = []
        self._task_start: float | None = None
        self.last_verdict = StuckVerdict.not_stuck()
        self.last_summary: TaskSummary | None = None

    @property
    def state(self) -> AutoRunState:
        return self._state

    @property
    def history(self) -> CommandHistoryTracker:
        return self._history

    @property
    def context(self) -> list[BaseMessage]:
        return list(self._context)

    @property
    def pending_safety(self) -> PendingSafetyCommand | None:
        return self._pending_safety

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the loop state."""
        return {
            "session_id": self.session_id,
            "enabled": self._state.enabled,
            "phase": self._state.phase.value,
            "step_count": self._state.step_count,
            "max_steps": MAX_AUTO_STEPS,
            "running_command_id": self._state.running_command_id,
            "stuck": self._state.stuck,
            "stuck_reason": self._state.stuck_reason,
            "pending_safety": asdict(self._pending_safety) if self._pending_safety else None,
            "history": [asdict(entry) for entry in self._history.window(len(self._history))],
        }

    # Public operations

    async def set_auto_run(self, enabled: bool) -> None:
        """
        Switch auto-run mode on or off.

        Turning it on starts a fresh run; turning it off discards the run
        state and summarizes any steps already taken.
        """
        async with self._lock:
            if enabled == self._state.enabled:
                return

            if not enabled and self._task_steps:
                self._finish_task(StopReason.USER)

            self._reset_run()
            self._state.enabled = enabled
            self._state.phase = LoopPhase.IDLE
            self._task_start = time.time() if enabled else None
            logger.info(f"[{self.session_id}] Auto-run {'enabled' if enabled else 'disabled'}")
            self._publish_status()

    async def toggle_auto_run(self) -> bool:
        await self.set_auto_run(not self._state.enabled)
        return self._state.enabled

    async def send_user_message(self, text: str) -> None:
        """
        Add a user message and consult the LLM.

        A new message resets the stuck state, the history window and the
        step counter, and drops any command still awaiting confirmation.

        Args:
            text: The user's message
        """
        async with self._lock:
            if self._pending_safety is not None:
                logger.info(
                    f"[{self.session_id}] Dropping pending command "
                    f"'{self._pending_safety.command}' for new user message"
                )
            self._reset_run()
            self._task_steps = []
            self._task_start = time.time()
            self._context.append(HumanMessage(content=text))
            await self._consult_llm()

    async def process_response(self, text: str) -> None:
        """
        Act on one LLM response.

        Args:
            text: The response text
        """
        async with self._lock:
            await self._process_response(text)

    async def on_command_started(self, command_id: str, command: str) -> None:
        async with self._lock:
            if command_id in self._dispatched:
                self._state.running_command_id = command_id
                logger.debug(f"[{self.session_id}] Command started: {command}")

    async def on_command_finished(
        self,
        command_id: str,
        command: str,
        exit_code: int,
        output: str,
    ) -> None:
        """
        Record a finished command and continue the loop.

        Args:
            command_id: Id from the dispatch request
            command: The command that ran
            exit_code: Its exit code (130 when cancelled)
            output: Its combined output
        """
        async with self._lock:
            origin = self._dispatched.pop(command_id, None)
            if self._state.running_command_id == command_id:
                self._state.running_command_id = None

            if origin is None:
                logger.debug(f"[{self.session_id}] Ignoring unknown command {command_id}")
                return

            if origin == ORIGIN_USER or not self._state.enabled:
                self._context.append(
                    SystemMessage(
                        content=format_output_message(
                            command,
                            output,
                            exit_code,
                            auto_run=False,
                            max_chars=settings.context_output_max_chars,
                        )
                    )
                )
                return

            await self._handle_auto_result(command, exit_code, output)

    async def resolve_safety(self, pending_id: str, approved: bool) -> None:
        """
        Approve or reject the command awaiting confirmation.

        Args:
            pending_id: Id of the pending command being decided
            approved: Whether the user approved it

        Raises:
            PendingCommandMismatchError: If no such command is pending
        """
        async with self._lock:
            pending = self._pending_safety
            if pending is None or pending.id != pending_id:
                raise PendingCommandMismatchError(f"No pending command with id {pending_id}")

            self._pending_safety = None
            if approved:
                logger.info(f"[{self.session_id}] Safety check approved: {pending.command}")
                if self._state.step_count >= MAX_AUTO_STEPS:
                    self._stop_for_budget()
                    return
                self._dispatch(pending.command, ORIGIN_AUTO)
                return

            logger.info(f"[{self.session_id}] Safety check rejected: {pending.command}")
            self._add_system_message(SAFETY_CANCELLED_MESSAGE)
            self._state.phase = LoopPhase.WAITING_FOR_USER
            self._channel.publish(EventType.AI_NEEDS_INPUT, reason="safety-rejected")

    async def run_manual_command(self, command: str) -> str:
        """
        Dispatch a command typed by the user.

        Args:
            command: The command to run

        Returns:
            Id of the dispatched command
        """
        async with self._lock:
            self._reset_run()
            self._state.phase = LoopPhase.IDLE
            return self._dispatch(command, ORIGIN_USER)

    def cancel_running_command(self) -> bool:
        """Request termination of the running command, if any."""
        command_id = self._state.running_command_id
        if command_id is None:
            return False
        self._channel.publish(EventType.CANCEL_COMMAND, command_id=command_id, reason="user")
        return True

    # Loop internals

    def _reset_run(self) -> None:
        self._history.clear()
        self._state.reset_counters()
        self._pending_safety = None
        self._consecutive_stalls = 0
        self._tool_rounds = 0
        self._last_response = None

    def _system_prompt(self) -> str:
        return build_system_prompt(str(self._cwd), self._state.enabled, self._os_name)

    def _add_system_message(self, content: str) -> None:
        self._context.append(SystemMessage(content=content))
        self._channel.publish(EventType.MESSAGE, role="system", content=content)

    def _publish_status(self) -> None:
        self._channel.publish(EventType.STATUS, **self.snapshot())

    async def _consult_llm(self) -> None:
        self._state.phase = LoopPhase.RUNNING
        self._channel.publish(EventType.AI_THINKING, thinking=True)
        try:
            response = await self._llm.chat(self._system_prompt(), list(self._context))
        except ProviderError as e:
            logger.error(f"[{self.session_id}] LLM call failed: {e}")
            self._channel.publish(
                EventType.PROVIDER_FAILURE,
                failure=FailureKind.PROVIDER_FAILURE.value,
                error=str(e),
            )
            self._context.append(AIMessage(content=PROVIDER_FAILURE_MESSAGE))
            self._channel.publish(EventType.MESSAGE, role="ai", content=PROVIDER_FAILURE_MESSAGE)
            self._state.phase = LoopPhase.IDLE
            return
        finally:
            self._channel.publish(EventType.AI_THINKING, thinking=False)

        self._channel.publish(EventType.MESSAGE, role="ai", content=response)
        await self._process_response(response)

    async def _process_response(self, text: str) -> None:
        self._context.append(AIMessage(content=text))
        parsed = parse_response(text)
        self._handle_directives(parsed)

        if not self._state.enabled:
            self._state.phase = LoopPhase.IDLE
            return

        sentinel = parsed.sentinel
        if sentinel is not None:
            logger.info(f"[{self.session_id}] AI requested input ({sentinel.kind.value})")
            self._state.phase = LoopPhase.WAITING_FOR_USER
            self._channel.publish(EventType.AI_NEEDS_INPUT, reason=sentinel.kind.value)
            return

        # Asking the user the same question twice is not a loop
        if self._last_response is not None and text.strip() == self._last_response:
            self._halt_stuck(
                StuckVerdict(
                    is_stuck=True,
                    reason=RESPONSE_LOOP_REASON,
                    suggestions=list(SIMILAR_COMMAND_SUGGESTIONS),
                )
            )
            return
        self._last_response = text.strip()

        outcomes = self._dispatcher.run(parsed.tool_calls)
        for outcome in outcomes:
            self._context.append(SystemMessage(content=outcome.output))
            payload = asdict(outcome)
            if not outcome.success:
                payload["failure"] = FailureKind.TOOL_FAILURE.value
            self._channel.publish(EventType.TOOL_EXECUTED, **payload)

        command = parsed.first_command
        if command is not None:
            self._consecutive_stalls = 0
            self._tool_rounds = 0
            self._request_dispatch(command.command)
            return

        if parsed.is_complete:
            self._complete(parsed.narrative())
            return

        if outcomes and self._tool_rounds < MAX_TOOL_ROUNDS:
            self._tool_rounds += 1
            await self._consult_llm()
            return

        await self._stall()

    def _handle_directives(self, parsed: ParsedResponse) -> None:
        for directive in parsed.directives:
            if directive.kind is DirectiveKind.NEW_TAB:
                self._channel.publish(EventType.NEW_TAB)
            elif directive.kind is DirectiveKind.CANCEL:
                self.cancel_running_command()

    async def _stall(self) -> None:
        self._consecutive_stalls += 1
        self._tool_rounds = 0
        self._channel.publish(
            EventType.STATUS,
            failure=FailureKind.PARSE_FAILURE.value,
            consecutive_stalls=self._consecutive_stalls,
        )

        if self._consecutive_stalls >= MAX_STALLS_BEFORE_ASK:
            logger.info(f"[{self.session_id}] Stalled {self._consecutive_stalls} times, asking user")
            self._state.phase = LoopPhase.WAITING_FOR_USER
            self._channel.publish(EventType.AI_NEEDS_INPUT, reason="stalled")
            return

        self._add_system_message(STALL_NOTICE)
        await self._consult_llm()

    def _request_dispatch(self, command: str) -> None:
        if self._state.step_count >= MAX_AUTO_STEPS:
            self._stop_for_budget()
            return

        impact = self._safety.check(command)
        if impact is not None:
            self._pending_safety = PendingSafetyCommand(
                command=command,
                session_id=self.session_id,
                impact=impact,
            )
            self._state.phase = LoopPhase.WAITING_FOR_SAFETY
            self._channel.publish(
                EventType.SAFETY_CHECK_REQUIRED,
                failure=FailureKind.SAFETY_BLOCKED.value,
                pending_id=self._pending_safety.id,
                command=command,
                impact=impact,
            )
            return

        self._dispatch(command, ORIGIN_AUTO)

    def _dispatch(self, command: str, origin: str) -> str:
        command_id = uuid.uuid4().hex[:12]
        self._dispatched[command_id] = origin
        if origin == ORIGIN_AUTO:
            self._state.step_count += 1
            self._state.phase = LoopPhase.RUNNING

        logger.info(
            f"[{self.session_id}] Dispatching ({origin}) step "
            f"{self._state.step_count}/{MAX_AUTO_STEPS}: {command}"
        )
        self._channel.publish(
            EventType.COMMAND_DISPATCH_REQUEST,
            command_id=command_id,
            command=command,
            origin=origin,
            cwd=str(self._cwd),
        )
        return command_id

    async def _handle_auto_result(self, command: str, exit_code: int, output: str) -> None:
        self._history.record(command, exit_code, output)
        self._task_steps.append(
            TaskStep(
                command=command,
                exit_code=exit_code,
                output=output[: settings.context_output_max_chars],
            )
        )

        error_type = None
        if exit_code != 0:
            match = self._matcher.analyze(output)
            if match is not None:
                details = ", ".join(f"{k}={v}" for k, v in match.fields.items())
                error_type = f"{match.name} ({details})" if details else match.name
            self._channel.publish(
                EventType.STATUS,
                failure=FailureKind.EXECUTION_FAILURE.value,
                command=command,
                exit_code=exit_code,
                error_category=match.name if match else None,
            )

        self._context.append(
            SystemMessage(
                content=format_output_message(
                    command,
                    output,
                    exit_code,
                    auto_run=True,
                    max_chars=settings.context_output_max_chars,
                    error_type=error_type,
                )
            )
        )

        verdict = self._detector.evaluate(self._history.window(STUCK_DETECTION_WINDOW))
        self.last_verdict = verdict
        if verdict.is_stuck:
            self._halt_stuck(verdict)
            return

        if self._state.phase != LoopPhase.RUNNING:
            return

        await self._consult_llm()

    def _halt_stuck(self, verdict: StuckVerdict) -> None:
        logger.warning(f"[{self.session_id}] Loop halted: {verdict.reason}")
        self.last_verdict = verdict
        self._state.stuck = True
        self._state.stuck_reason = verdict.reason
        self._state.phase = LoopPhase.STUCK

        help_message = format_stuck_message(verdict)
        self._context.append(AIMessage(content=help_message))
        self._channel.publish(
            EventType.STUCK_DETECTED,
            failure=FailureKind.STUCK_LOOP.value,
            reason=verdict.reason,
            suggestions=verdict.suggestions,
            failed_commands=verdict.failed_commands,
        )
        self._channel.publish(EventType.MESSAGE, role="ai", content=help_message)

    def _stop_for_budget(self) -> None:
        logger.warning(f"[{self.session_id}] Step budget of {MAX_AUTO_STEPS} exhausted")
        self._channel.publish(
            EventType.BUDGET_EXCEEDED,
            failure=FailureKind.BUDGET_EXCEEDED.value,
            step_count=self._state.step_count,
            limit=MAX_AUTO_STEPS,
        )
        self._add_system_message(BUDGET_NOTICE)
        self._finish_task(StopReason.LIMIT)
        self._reset_run()
        self._state.enabled = False
        self._state.phase = LoopPhase.IDLE
        self._publish_status()

    def _complete(self, narrative: str) -> None:
        logger.info(f"[{self.session_id}] Task complete after {self._state.step_count} steps")
        self._finish_task(StopReason.COMPLETE, narrative)
        self._reset_run()
        self._state.phase = LoopPhase.IDLE

    def _finish_task(self, reason: StopReason, narrative: str = "") -> TaskSummary:
        summary = build_task_summary(self._task_steps, self._task_start, reason, narrative)
        self.last_summary = summary
        self._task_steps = []
        self._task_start = None
        self._channel.publish(
            EventType.TASK_COMPLETE,
            reason=reason.value,
            summary=asdict(summary),
        )
        return summary
