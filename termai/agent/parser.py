"""Tokenizer for LLM responses in auto-run mode.

A response is split, left to right, into tagged segments:

- ``Sentinel``: ``[WAIT]``, ``[ASK_USER]`` or ``[NEED_HELP]``
- ``ToolCall``: ``[READ_FILE: path]`` and friends; ``WRITE_FILE`` takes the
  fenced block that immediately follows it as its content
- ``ShellCommand``: any other fenced code block
- ``Directive``: ``[NEW_TAB]`` or ``[CANCEL]``
- ``PlainText``: everything in between
"""

import re
from dataclasses import dataclass, field
from enum import Enum


class SentinelKind(str, Enum):
    WAIT = "WAIT"
    ASK_USER = "ASK_USER"
    NEED_HELP = "NEED_HELP"


class ToolVerb(str, Enum):
    READ_FILE = "READ_FILE"
    WRITE_FILE = "WRITE_FILE"
    LIST_FILES = "LIST_FILES"
    MKDIR = "MKDIR"


class DirectiveKind(str, Enum):
    NEW_TAB = "NEW_TAB"
    CANCEL = "CANCEL"


@dataclass
class Sentinel:
    kind: SentinelKind
    start: int


@dataclass
class ToolCall:
    verb: ToolVerb
    argument: str
    start: int
    content: str | None = None


@dataclass
class ShellCommand:
    command: str
    language: str
    start: int
    body: str = ""


@dataclass
class Directive:
    kind: DirectiveKind
    start: int


@dataclass
class PlainText:
    text: str
    start: int


Segment = Sentinel | ToolCall | ShellCommand | Directive | PlainText

COMPLETION_PHRASE = "task complete"

_TOKEN_RE = re.compile(
    r"(?P<fence>```(?P<lang>[\w+#.-]*)[ \t]*\n(?P<body>.*?)\n?[ \t]*```)"
    r"|(?P<sentinel>\[(?P<sentinel_kind>WAIT|ASK_USER|NEED_HELP)\])"
    r"|(?P<tool>\[(?P<verb>READ_FILE|WRITE_FILE|LIST_FILES|MKDIR):[ \t]*(?P<arg>[^\]\n]*?)[ \t]*\])"
    r"|(?P<directive>\[(?P<directive_kind>NEW_TAB|CANCEL)\])",
    re.DOTALL,
)

_MISSION_REPORT_RE = re.compile(r"Mission Report:(.*?)Task Complete", re.IGNORECASE | re.DOTALL)


@dataclass
class ParsedResponse:
    """Tagged segments of one LLM response, in order of occurrence."""

    text: str
    segments: list[Segment] = field(default_factory=list)

    @property
    def sentinel(self) -> Sentinel | None:
        return next((s for s in self.segments if isinstance(s, Sentinel)), None)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [s for s in self.segments if isinstance(s, ToolCall)]

    @property
    def commands(self) -> list[ShellCommand]:
        return [s for s in self.segments if isinstance(s, ShellCommand) and s.command]

    @property
    def first_command(self) -> ShellCommand | None:
        return next(iter(self.commands), None)

    @property
    def directives(self) -> list[Directive]:
        return [s for s in self.segments if isinstance(s, Directive)]

    @property
    def is_complete(self) -> bool:
        return COMPLETION_PHRASE in self.text.lower()

    def narrative(self) -> str:
        """Mission report text preceding the completion phrase, if any."""
        match = _MISSION_REPORT_RE.search(self.text)
        if match:
            return match.group(1).strip()
        return re.sub(COMPLETION_PHRASE, "", self.text, flags=re.IGNORECASE).strip()


def _attach_write_content(segments: list[Segment]) -> list[Segment]:
    """Fold a fenced block directly after WRITE_FILE into the tool call."""
    result: list[Segment] = []
    index = 0
    while index < len(segments):
        segment = segments[index]
        result.append(segment)
        index += 1
        if not (isinstance(segment, ToolCall) and segment.verb is ToolVerb.WRITE_FILE):
            continue

        # Skip whitespace-only text between the tag and the block
        lookahead = index
        if (
            lookahead < len(segments)
            and isinstance(segments[lookahead], PlainText)
            and not segments[lookahead].text.strip()
        ):
            lookahead += 1
        if lookahead < len(segments) and isinstance(segments[lookahead], ShellCommand):
            block = segments[lookahead]
            segment.content = block.body
            index = lookahead + 1
    return result


def parse_response(text: str) -> ParsedResponse:
    """
    Tokenize an LLM response.

    Args:
        text: Raw response text

    Returns:
        ParsedResponse with segments in left-to-right order
    """
    segments: list[Segment] = []
    position = 0

    for match in _TOKEN_RE.finditer(text):
        if match.start() > position:
            segments.append(PlainText(text=text[position : match.start()], start=position))

        if match.group("fence") is not None:
            segments.append(
                ShellCommand(
                    command=match.group("body").strip(),
                    body=match.group("body"),
                    language=match.group("lang") or "",
                    start=match.start(),
                )
            )
        elif match.group("sentinel") is not None:
            segments.append(
                Sentinel(kind=SentinelKind(match.group("sentinel_kind")), start=match.start())
            )
        elif match.group("tool") is not None:
            segments.append(
                ToolCall(
                    verb=ToolVerb(match.group("verb")),
                    argument=match.group("arg").strip(),
                    start=match.start(),
                )
            )
        else:
            segments.append(
                Directive(kind=DirectiveKind(match.group("directive_kind")), start=match.start())
            )
        position = match.end()

    if position < len(text):
        segments.append(PlainText(text=text[position:], start=position))

    return ParsedResponse(text=text, segments=_attach_write_content(segments))
