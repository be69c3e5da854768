"""Shared fakes for the auto-run tests."""

import asyncio
from pathlib import Path

import pytest
from langchain_core.messages import BaseMessage

from termai.agent.controller import AutoRunController
from termai.agent.events import EventChannel, EventType, SessionEvent
from termai.llm.client import ProviderError
from termai.tools.dispatcher import ToolDispatcher
from termai.tools.filesystem import FileEntry, FileSystemError
from termai.tools.safety import SafetyGate
from termai.tools.shell import CANCELLED_EXIT_CODE, CommandResult


class FakeChatClient:
    """Returns scripted responses in order and records every call."""

    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[tuple[str, list[BaseMessage]]] = []

    async def chat(self, system_prompt: str, context: list[BaseMessage]) -> str:
        self.calls.append((system_prompt, list(context)))
        if not self.responses:
            raise ProviderError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class InMemoryFileSystem:
    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files = dict(files or {})
        self.directories: set[str] = set()

    def read(self, path: str) -> str:
        if path not in self.files:
            raise FileSystemError(f"File not found: {path}")
        return self.files[path]

    def write(self, path: str, content: str) -> None:
        self.files[path] = content

    def list(self, path: str) -> list[FileEntry]:
        prefix = "" if path in ("", ".") else path.rstrip("/") + "/"
        entries = [
            FileEntry(name=name[len(prefix):], is_directory=False)
            for name in sorted(self.files)
            if name.startswith(prefix) and "/" not in name[len(prefix):]
        ]
        entries += [
            FileEntry(name=name[len(prefix):], is_directory=True)
            for name in sorted(self.directories)
            if name.startswith(prefix) and "/" not in name[len(prefix):]
        ]
        return entries

    def mkdir(self, path: str) -> None:
        self.directories.add(path)


class FakeClassifier:
    """Flags commands containing one of the configured fragments."""

    def __init__(self, flagged: dict[str, str] | None = None) -> None:
        self.flagged = dict(flagged or {})

    def classify(self, command: str) -> str | None:
        for fragment, impact in self.flagged.items():
            if fragment in command:
                return impact
        return None


class FakeExecutor:
    """
    Executor stand-in with scripted results.

    A command named "hang" blocks until cancelled.
    """

    def __init__(self, results: dict[str, tuple[int, str]] | None = None) -> None:
        self.results = dict(results or {})
        self.commands: list[str] = []

    async def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: float | None = None,
        on_output=None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        self.commands.append(command)
        if command == "hang":
            assert cancel_event is not None
            await cancel_event.wait()
            return CommandResult(
                command=command, output="", exit_code=CANCELLED_EXIT_CODE, cancelled=True
            )

        exit_code, output = self.results.get(command, (0, f"ran {command}\n"))
        if on_output and output:
            on_output(output)
        await asyncio.sleep(0)
        return CommandResult(command=command, output=output, exit_code=exit_code)


class EventRecorder:
    def __init__(self, channel: EventChannel) -> None:
        self.events: list[SessionEvent] = []
        channel.subscribe(self.events.append)

    def of_type(self, event_type: EventType) -> list[SessionEvent]:
        return [e for e in self.events if e.type == event_type]

    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def last(self, event_type: EventType) -> SessionEvent:
        matching = self.of_type(event_type)
        assert matching, f"no {event_type.value} event published"
        return matching[-1]


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel("test-session")


@pytest.fixture
def recorder(channel: EventChannel) -> EventRecorder:
    return EventRecorder(channel)


@pytest.fixture
def llm() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def fs() -> InMemoryFileSystem:
    return InMemoryFileSystem()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def controller(
    channel: EventChannel,
    llm: FakeChatClient,
    fs: InMemoryFileSystem,
    classifier: FakeClassifier,
    tmp_path: Path,
) -> AutoRunController:
    return AutoRunController(
        "test-session",
        channel,
        llm,
        dispatcher=ToolDispatcher(fs),
        safety=SafetyGate(classifier),
        cwd=tmp_path,
        os_name="Linux",
    )
