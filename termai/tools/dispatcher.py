"""Execution of file tool invocations embedded in LLM responses."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from termai.tools.filesystem import FileSystem, FileSystemError, LocalFileSystem

if TYPE_CHECKING:
    from termai.agent.parser import ToolCall

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Synthetic context message produced by one tool invocation."""

    verb: str
    argument: str
    output: str
    success: bool


class ToolDispatcher:
    """
    Runs ``[VERB: argument]`` invocations against a file system.

    Holds no state of its own; every failure becomes a ``[TOOL_ERROR]``
    message rather than an exception.
    """

    def __init__(self, fs: FileSystem | None = None) -> None:
        """
        Initialize the dispatcher.

        Args:
            fs: File system collaborator (defaults to a LocalFileSystem at the project root)
        """
        self._fs = fs or LocalFileSystem()
        self._handlers: dict[str, Callable[["ToolCall"], str]] = {
            "READ_FILE": self._read_file,
            "WRITE_FILE": self._write_file,
            "LIST_FILES": self._list_files,
            "MKDIR": self._mkdir,
        }

    def dispatch(self, call: "ToolCall") -> ToolOutcome:
        """
        Execute a single tool invocation.

        Args:
            call: The parsed tool call

        Returns:
            ToolOutcome carrying the message to append to the context
        """
        logger.info(f"Executing tool {call.verb.value}: {call.argument}")
        try:
            output = self._handlers[call.verb.value](call)
        except FileSystemError as e:
            logger.warning(f"Tool {call.verb.value} failed: {e}")
            return self._failure(call, f"[TOOL_ERROR]\n{call.verb.value} failed: {e}")
        except Exception as e:
            # Injected file systems may raise anything
            logger.error(f"Tool {call.verb.value} raised unexpectedly: {e}")
            return self._failure(
                call, f"[TOOL_ERROR]\n{call.verb.value} failed: {type(e).__name__}: {e}"
            )

        if output.startswith("[TOOL_ERROR]"):
            return self._failure(call, output)
        return ToolOutcome(
            verb=call.verb.value, argument=call.argument, output=output, success=True
        )

    def run(self, calls: list["ToolCall"]) -> list[ToolOutcome]:
        """Execute tool invocations left to right."""
        return [self.dispatch(call) for call in calls]

    def _failure(self, call: "ToolCall", output: str) -> ToolOutcome:
        return ToolOutcome(
            verb=call.verb.value, argument=call.argument, output=output, success=False
        )

    def _read_file(self, call: "ToolCall") -> str:
        content = self._fs.read(call.argument)
        return f"[TOOL_OUTPUT]\nFile: {call.argument}\nContent:\n```\n{content}\n```"

    def _write_file(self, call: "ToolCall") -> str:
        if call.content is None:
            return f"[TOOL_ERROR]\nNo content block found for WRITE_FILE: {call.argument}"
        self._fs.write(call.argument, call.content)
        return f"[TOOL_OUTPUT]\nFile written: {call.argument}"

    def _list_files(self, call: "ToolCall") -> str:
        entries = self._fs.list(call.argument or ".")
        lines = [f"{'[DIR]' if e.is_directory else '[FILE]'} {e.name}" for e in entries]
        return f"[TOOL_OUTPUT]\nDirectory: {call.argument}\nFiles:\n" + "\n".join(lines)

    def _mkdir(self, call: "ToolCall") -> str:
        self._fs.mkdir(call.argument)
        return f"[TOOL_OUTPUT]\nDirectory created: {call.argument}"
