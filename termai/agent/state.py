"""State schema for the auto-run control loop."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

# Fixed loop limits. These bound the autonomous loop and are not settings.
MAX_AUTO_STEPS = 10
MAX_CONSECUTIVE_FAILURES = 3
MAX_SIMILAR_COMMANDS = 3
STUCK_DETECTION_WINDOW = 5
HISTORY_CAPACITY = 10
MAX_STALLS_BEFORE_ASK = 2
MAX_TOOL_ROUNDS = 5


class LoopPhase(str, Enum):
    """Phases of the auto-run state machine."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_FOR_SAFETY = "waiting_for_safety"
    WAITING_FOR_USER = "waiting_for_user"
    STUCK = "stuck"


class FailureKind(str, Enum):
    """Failure taxonomy surfaced on the session event stream."""

    EXECUTION_FAILURE = "execution_failure"
    TOOL_FAILURE = "tool_failure"
    PARSE_FAILURE = "parse_failure"
    STUCK_LOOP = "stuck_loop"
    BUDGET_EXCEEDED = "budget_exceeded"
    SAFETY_BLOCKED = "safety_blocked"
    PROVIDER_FAILURE = "provider_failure"


class StopReason(str, Enum):
    """Why an auto-run task ended."""

    USER = "user"
    COMPLETE = "complete"
    ERROR = "error"
    LIMIT = "limit"


@dataclass
class CommandHistoryEntry:
    """One finished command as seen by the stuck detector."""

    command: str
    exit_code: int
    timestamp: float = field(default_factory=time.time)
    error_category: str | None = None

    @property
    def failed(self) -> bool:
        return self.exit_code != 0

    @property
    def base_command(self) -> str:
        parts = self.command.split()
        return parts[0] if parts else ""


@dataclass
class StuckVerdict:
    """Result of a stuck-detection pass."""

    is_stuck: bool
    reason: str = ""
    suggestions: list[str] = field(default_factory=list)
    failed_commands: list[str] = field(default_factory=list)

    @classmethod
    def not_stuck(cls) -> "StuckVerdict":
        return cls(is_stuck=False)


@dataclass
class PendingSafetyCommand:
    """A command held back until the user approves or rejects it."""

    command: str
    session_id: str
    impact: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class AutoRunState:
    """
    Mutable auto-run state for one session.

    Attributes:
        enabled: Whether auto-run mode is on
        step_count: Commands dispatched in the current run (0..MAX_AUTO_STEPS)
        running_command_id: Id of the command currently executing, if any
        stuck: Whether the loop halted on a stuck verdict
        stuck_reason: Human readable reason for the halt
        phase: Current state machine phase
    """

    enabled: bool = False
    step_count: int = 0
    running_command_id: str | None = None
    stuck: bool = False
    stuck_reason: str | None = None
    phase: LoopPhase = LoopPhase.IDLE

    def clear_stuck(self) -> None:
        self.stuck = False
        self.stuck_reason = None

    def reset_counters(self) -> None:
        self.step_count = 0
        self.clear_stuck()


@dataclass
class TaskStep:
    """A command executed as part of an auto-run task."""

    command: str
    exit_code: int
    output: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass
class TaskSummary:
    """Summary emitted when an auto-run task ends."""

    total_steps: int
    successful_steps: int
    failed_steps: int
    start_time: float
    end_time: float
    app_status: str
    final_message: str
    app_port: int | None = None
    narrative: str = ""
    steps: list[TaskStep] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time
