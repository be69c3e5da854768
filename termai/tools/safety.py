"""Impact classification and the safety gate in front of command dispatch."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SafetyRule:
    """A dangerous-command pattern and the impact it describes."""

    pattern: re.Pattern[str]
    risk: RiskLevel
    description: str


class ImpactClassifier(Protocol):
    """External judgment of how destructive a command is."""

    def classify(self, command: str) -> str | None: ...


_START = r"(?:^|[\s;&|(])"


class RuleBasedImpactClassifier:
    """
    Pattern-based impact classifier.

    Rules are checked in order and the first match describes the impact, so
    the most specific (and most severe) patterns come first.
    """

    SAFETY_RULES = [
        SafetyRule(
            re.compile(_START + r"rm\s+(?:-[a-zA-Z]+\s+)*/(?:\*|\s|$)"),
            RiskLevel.CRITICAL,
            "CRITICAL: Recursively deletes from root. System destruction likely.",
        ),
        SafetyRule(
            re.compile(_START + r"rm\s+(?:-[a-zA-Z]+\s+)*~/?(?:\*|\s|$)"),
            RiskLevel.CRITICAL,
            "CRITICAL: Recursively deletes home directory. Data loss likely.",
        ),
        SafetyRule(
            re.compile(_START + r"mkfs"),
            RiskLevel.CRITICAL,
            "Formats a filesystem. All data on target will be lost.",
        ),
        SafetyRule(
            re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
            RiskLevel.CRITICAL,
            "Fork bomb. Will crash the system.",
        ),
        SafetyRule(
            re.compile(r">\s*/dev/(?:sd[a-z]|hd[a-z]|nvme)"),
            RiskLevel.CRITICAL,
            "Writes directly to disk device. Data loss likely.",
        ),
        SafetyRule(
            re.compile(_START + r"rm\s+(?:-[a-zA-Z]+\s+)*-[a-zA-Z]*[rR][a-zA-Z]*\s+"),
            RiskLevel.HIGH,
            "Deletes files/directories recursively. Permanent data loss.",
        ),
        SafetyRule(
            re.compile(_START + r"dd\s+"),
            RiskLevel.HIGH,
            "Low-level data copy. Can overwrite disks/partitions.",
        ),
        SafetyRule(
            re.compile(_START + r"(?:curl|wget)\s.*\|\s*(?:sudo\s+)?(?:ba|z)?sh\b"),
            RiskLevel.HIGH,
            "Downloads and executes remote script. Security risk.",
        ),
        SafetyRule(
            re.compile(_START + r"rm\s+"),
            RiskLevel.MEDIUM,
            "Deletes files permanently.",
        ),
        SafetyRule(
            re.compile(_START + r"sudo\s+"),
            RiskLevel.MEDIUM,
            "Runs with superuser privileges. Can modify system files.",
        ),
        SafetyRule(
            re.compile(_START + r"chmod\s+(?:-R\s+)?777"),
            RiskLevel.MEDIUM,
            "Sets overly permissive file permissions.",
        ),
    ]

    def assess(self, command: str) -> SafetyRule | None:
        """Return the first rule matching the command, if any."""
        for rule in self.SAFETY_RULES:
            if rule.pattern.search(command):
                return rule
        return None

    def classify(self, command: str) -> str | None:
        rule = self.assess(command)
        return rule.description if rule else None


class SafetyGate:
    """Holds back commands the impact classifier flags."""

    def __init__(self, classifier: ImpactClassifier | None = None) -> None:
        self._classifier = classifier or RuleBasedImpactClassifier()

    def check(self, command: str) -> str | None:
        """
        Classify a proposed command.

        Args:
            command: The shell command about to be dispatched

        Returns:
            An impact description if the command needs confirmation, else None
        """
        impact = self._classifier.classify(command)
        if impact:
            logger.warning(f"Command requires confirmation: {command} - {impact}")
        return impact

