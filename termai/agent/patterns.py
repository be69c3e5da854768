"""Classification of command output into known failure categories."""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorCategory:
    """A named failure category with its detection patterns."""

    name: str
    priority: int
    patterns: tuple[re.Pattern[str], ...]
    extractor: Callable[[str], dict[str, str]] | None = field(default=None, compare=False)

    def matches(self, output: str) -> bool:
        return any(pattern.search(output) for pattern in self.patterns)

    def extract(self, output: str) -> dict[str, str]:
        """Pull structured fields (port, path, ...) out of the output."""
        if self.extractor is None:
            return {}
        return self.extractor(output)


@dataclass
class ErrorMatch:
    """A classified failure with the fields extracted from its output."""

    category: ErrorCategory
    fields: dict[str, str]

    @property
    def name(self) -> str:
        return self.category.name


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def _extract_port(output: str) -> dict[str, str]:
    match = re.search(r"(?:port\s*[:\s]?\s*|:)(\d{2,5})", output, re.IGNORECASE)
    return {"port": match.group(1) if match else "unknown"}


def _extract_path(output: str) -> dict[str, str]:
    match = re.search(r"['\"]([^'\"]+)['\"]", output)
    return {"path": match.group(1) if match else "unknown"}


def _extract_package_manager(output: str) -> dict[str, str]:
    for manager in ("npm", "yarn", "pip", "cargo"):
        if re.search(manager, output, re.IGNORECASE):
            return {"package_manager": manager}
    return {"package_manager": "unknown"}


ERROR_CATEGORIES: tuple[ErrorCategory, ...] = (
    ErrorCategory(
        name="port_in_use",
        priority=100,
        patterns=_compile(
            r"address already in use",
            r"EADDRINUSE",
            r"errno 98",
            r"port is already allocated",
            r"bind: address already in use",
        ),
        extractor=_extract_port,
    ),
    ErrorCategory(
        name="permission_denied",
        priority=90,
        patterns=_compile(
            r"permission denied",
            r"EACCES",
            r"operation not permitted",
            r"access is denied",
        ),
        extractor=_extract_path,
    ),
    ErrorCategory(
        name="command_not_found",
        priority=85,
        patterns=_compile(
            r"command not found",
            r"not recognized as.*command",
            r"is not recognized",
            r"No such file or directory.*bin",
        ),
    ),
    ErrorCategory(
        name="file_not_found",
        priority=80,
        patterns=_compile(
            r"no such file or directory",
            r"ENOENT",
            r"cannot find path",
            r"file not found",
        ),
    ),
    ErrorCategory(
        name="dependency_error",
        priority=75,
        patterns=_compile(
            r"cannot find module",
            r"module not found",
            r"no matching version",
            r"peer dep",
            r"ERESOLVE",
            r"npm ERR!",
            r"yarn error",
            r"pip.*error",
        ),
        extractor=_extract_package_manager,
    ),
    ErrorCategory(
        name="git_conflict",
        priority=70,
        patterns=_compile(
            r"merge conflict",
            r"CONFLICT.*Merge",
            r"automatic merge failed",
            r"fix conflicts",
        ),
    ),
    ErrorCategory(
        name="generic_error",
        priority=1,
        patterns=_compile(
            r"error:",
            r"failed:",
            r"exception:",
            r"fatal:",
        ),
    ),
)


class ErrorPatternMatcher:
    """
    Classifies raw command output into a failure category.

    Categories are tested in descending priority order so that a specific
    category (e.g. ``port_in_use``) always wins over the catch-all
    ``generic_error`` no matter how the table is declared.
    """

    def __init__(self, categories: tuple[ErrorCategory, ...] = ERROR_CATEGORIES) -> None:
        self._categories = tuple(
            sorted(categories, key=lambda category: category.priority, reverse=True)
        )

    @property
    def categories(self) -> tuple[ErrorCategory, ...]:
        return self._categories

    def classify(self, output: str) -> ErrorCategory | None:
        """
        Return the highest-priority category matching the output.

        Args:
            output: Raw command output (stdout and stderr combined)

        Returns:
            The matched ErrorCategory, or None if nothing matches
        """
        if not output:
            return None
        for category in self._categories:
            if category.matches(output):
                return category
        return None

    def analyze(self, output: str) -> ErrorMatch | None:
        """Classify the output and extract the category's structured fields."""
        category = self.classify(output)
        if category is None:
            logger.debug("No known error pattern detected")
            return None
        return ErrorMatch(category=category, fields=category.extract(output))

    def get(self, name: str) -> ErrorCategory | None:
        """Look up a category by name."""
        return next((c for c in self._categories if c.name == name), None)
