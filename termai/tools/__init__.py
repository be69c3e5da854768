"""Tool components."""

from termai.tools.dispatcher import ToolDispatcher, ToolOutcome
from termai.tools.filesystem import FileEntry, FileSystem, FileSystemError, LocalFileSystem
from termai.tools.safety import ImpactClassifier, RiskLevel, RuleBasedImpactClassifier, SafetyGate
from termai.tools.shell import CommandResult, CommandTimeoutError, ShellExecutor

__all__ = [
    "CommandResult",
    "CommandTimeoutError",
    "FileEntry",
    "FileSystem",
    "FileSystemError",
    "ImpactClassifier",
    "LocalFileSystem",
    "RiskLevel",
    "RuleBasedImpactClassifier",
    "SafetyGate",
    "ShellExecutor",
    "ToolDispatcher",
    "ToolOutcome",
]
