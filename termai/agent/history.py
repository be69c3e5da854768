"""Bounded per-session history of finished commands."""

import logging
from collections import deque

from termai.agent.patterns import ErrorPatternMatcher
from termai.agent.state import HISTORY_CAPACITY, CommandHistoryEntry

logger = logging.getLogger(__name__)


class CommandHistoryTracker:
    """Ring of the most recent commands, oldest evicted first."""

    def __init__(
        self,
        matcher: ErrorPatternMatcher | None = None,
        capacity: int = HISTORY_CAPACITY,
    ) -> None:
        self._matcher = matcher or ErrorPatternMatcher()
        self._entries: deque[CommandHistoryEntry] = deque(maxlen=capacity)

    def record(self, command: str, exit_code: int, output: str) -> CommandHistoryEntry:
        """
        Record a finished command.

        Output is classified only when the command failed.

        Args:
            command: The command that ran
            exit_code: Its exit code
            output: Combined command output

        Returns:
            The appended history entry
        """
        category = None
        if exit_code != 0:
            match = self._matcher.classify(output)
            category = match.name if match else None

        entry = CommandHistoryEntry(
            command=command,
            exit_code=exit_code,
            error_category=category,
        )
        self._entries.append(entry)
        logger.debug(f"Recorded command '{command}' (exit={exit_code}, category={category})")
        return entry

    def window(self, n: int) -> list[CommandHistoryEntry]:
        """Return the most recent n entries, oldest first."""
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
