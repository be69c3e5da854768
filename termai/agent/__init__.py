"""Agent components."""

from termai.agent.controller import AutoRunController, PendingCommandMismatchError
from termai.agent.events import EventChannel, EventType, SessionEvent
from termai.agent.history import CommandHistoryTracker
from termai.agent.parser import ParsedResponse, parse_response
from termai.agent.patterns import ErrorCategory, ErrorPatternMatcher
from termai.agent.session import SessionManager, SessionNotFoundError, TerminalSession
from termai.agent.state import AutoRunState, LoopPhase, StuckVerdict, TaskSummary
from termai.agent.stuck import StuckDetector
from termai.agent.watchdog import HealthStatus, Watchdog

__all__ = [
    "AutoRunController",
    "AutoRunState",
    "CommandHistoryTracker",
    "ErrorCategory",
    "ErrorPatternMatcher",
    "EventChannel",
    "EventType",
    "HealthStatus",
    "LoopPhase",
    "ParsedResponse",
    "PendingCommandMismatchError",
    "SessionEvent",
    "SessionManager",
    "SessionNotFoundError",
    "StuckDetector",
    "StuckVerdict",
    "TaskSummary",
    "TerminalSession",
    "Watchdog",
    "parse_response",
]
