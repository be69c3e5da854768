"""Heuristics that decide whether the auto-run loop is looping unproductively."""

import logging
import re
from collections import Counter

from termai.agent.state import (
    MAX_CONSECUTIVE_FAILURES,
    MAX_SIMILAR_COMMANDS,
    CommandHistoryEntry,
    StuckVerdict,
)

logger = logging.getLogger(__name__)

# Category-name fragments mapped to canned remediation questions.
SUGGESTION_RULES: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (
        re.compile(r"port|address.*in.*use|eaddrinuse", re.IGNORECASE),
        (
            "A process is blocking the port. Should I find and kill it?",
            "Should I try a different port?",
        ),
    ),
    (
        re.compile(r"permission", re.IGNORECASE),
        (
            "This requires elevated permissions. Should I use sudo?",
            "Should I check whether the file or directory permissions need to change?",
        ),
    ),
    (
        re.compile(r"command.*not.*found", re.IGNORECASE),
        (
            "The required tool may not be installed. Should I install it?",
            "Should I check whether the tool is on your PATH?",
        ),
    ),
    (
        re.compile(r"file.*not.*found|no.*such.*file", re.IGNORECASE),
        (
            "The file or directory doesn't exist. Should I create it?",
            "Can you confirm the path is correct?",
        ),
    ),
    (
        re.compile(r"dependency|module.*not.*found|import.*error", re.IGNORECASE),
        (
            "A dependency is missing. Should I install it with the project's package manager?",
            "Are we in the correct virtual environment or project directory?",
        ),
    ),
    (
        re.compile(r"conflict", re.IGNORECASE),
        (
            "There is a merge conflict. Should I show the conflicting files?",
            "Should I abort the merge and start over?",
        ),
    ),
]

GENERIC_SUGGESTIONS = (
    "Would you like to try a different approach?",
    "Can you provide more context about what you're trying to achieve?",
    "Should I investigate the environment setup?",
)

SIMILAR_COMMAND_SUGGESTIONS = (
    "Try a completely different approach",
    "Check if prerequisites are missing",
    "Verify the environment is correctly set up",
)


def generate_suggestions(categories: list[str]) -> list[str]:
    """
    Build remediation questions for a set of error categories.

    Args:
        categories: Error category names, in order of appearance

    Returns:
        De-duplicated suggestions, falling back to generic questions
    """
    suggestions: list[str] = []
    for category in categories:
        for pattern, canned in SUGGESTION_RULES:
            if pattern.search(category):
                suggestions.extend(canned)

    if not suggestions:
        suggestions.extend(GENERIC_SUGGESTIONS)

    return list(dict.fromkeys(suggestions))


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


class StuckDetector:
    """
    Evaluates the recent command window for unproductive looping.

    Three checks run in a fixed order and the first one that fires decides
    the verdict: failure count, repeated base command, recurring error
    category.
    """

    def __init__(
        self,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
        max_similar: int = MAX_SIMILAR_COMMANDS,
    ) -> None:
        self._max_failures = max_failures
        self._max_similar = max_similar

    def evaluate(self, window: list[CommandHistoryEntry]) -> StuckVerdict:
        """
        Decide whether the loop is stuck.

        Args:
            window: The most recent history entries, oldest first

        Returns:
            A fresh StuckVerdict
        """
        if len(window) < 2:
            return StuckVerdict.not_stuck()

        verdict = (
            self._check_failures(window)
            or self._check_similar_commands(window)
            or self._check_recurring_error(window)
        )
        if verdict is None:
            return StuckVerdict.not_stuck()

        logger.info(f"Stuck loop detected: {verdict.reason}")
        return verdict

    def _check_failures(self, window: list[CommandHistoryEntry]) -> StuckVerdict | None:
        failures = [entry for entry in window if entry.failed]
        if len(failures) < self._max_failures:
            return None

        failed_commands = [entry.command for entry in failures]
        bases = ", ".join(_unique([entry.base_command for entry in failures]))
        categories = _unique([entry.error_category or "" for entry in failures])
        return StuckVerdict(
            is_stuck=True,
            reason=f"{len(failures)} consecutive command failures detected ({bases})",
            suggestions=generate_suggestions(categories),
            failed_commands=failed_commands,
        )

    def _check_similar_commands(
        self,
        window: list[CommandHistoryEntry],
    ) -> StuckVerdict | None:
        groups: dict[str, list[str]] = {}
        for entry in window:
            groups.setdefault(entry.base_command, []).append(entry.command)

        for base, commands in groups.items():
            if base and len(commands) >= self._max_similar:
                return StuckVerdict(
                    is_stuck=True,
                    reason=f'Repeated attempts with similar "{base}" commands',
                    suggestions=list(SIMILAR_COMMAND_SUGGESTIONS),
                    failed_commands=commands,
                )
        return None

    def _check_recurring_error(
        self,
        window: list[CommandHistoryEntry],
    ) -> StuckVerdict | None:
        counts = Counter(entry.error_category for entry in window if entry.error_category)
        for category, count in counts.items():
            if count >= self._max_failures:
                return StuckVerdict(
                    is_stuck=True,
                    reason=f'Same error "{category}" occurring repeatedly',
                    suggestions=generate_suggestions([category]),
                    failed_commands=[
                        entry.command for entry in window if entry.error_category == category
                    ],
                )
        return None
