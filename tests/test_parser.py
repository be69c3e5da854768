"""Tests for the LLM response tokenizer."""

from termai.agent.parser import (
    Directive,
    DirectiveKind,
    PlainText,
    Sentinel,
    SentinelKind,
    ShellCommand,
    ToolCall,
    ToolVerb,
    parse_response,
)


def test_segments_in_order():
    parsed = parse_response(
        "First look around.\n[LIST_FILES: src]\nThen run:\n```bash\nnpm test\n```\n[NEW_TAB]"
    )

    kinds = [type(s) for s in parsed.segments if not isinstance(s, PlainText)]
    assert kinds == [ToolCall, ShellCommand, Directive]
    starts = [s.start for s in parsed.segments]
    assert starts == sorted(starts)


def test_first_command_only():
    parsed = parse_response("```bash\nnpm install\n```\nthen\n```sh\nnpm start\n```")

    assert [c.command for c in parsed.commands] == ["npm install", "npm start"]
    assert parsed.first_command.command == "npm install"
    assert parsed.first_command.language == "bash"


def test_untagged_fence_is_a_command():
    parsed = parse_response("```\nls -la\n```")

    assert parsed.first_command.command == "ls -la"
    assert parsed.first_command.language == ""


def test_empty_fence_is_not_a_command():
    assert parse_response("```bash\n\n```").first_command is None


def test_write_file_takes_following_block():
    parsed = parse_response(
        "[WRITE_FILE: src/app.py]\n```python\nimport os\nprint(os.getcwd())\n```\n"
        "```bash\npython src/app.py\n```"
    )

    call = parsed.tool_calls[0]
    assert call.verb is ToolVerb.WRITE_FILE
    assert call.argument == "src/app.py"
    assert call.content == "import os\nprint(os.getcwd())"
    assert [c.command for c in parsed.commands] == ["python src/app.py"]


def test_write_file_without_block():
    parsed = parse_response("[WRITE_FILE: notes.md]\nI'll add content later.")

    assert parsed.tool_calls[0].content is None
    assert parsed.first_command is None


def test_read_file_does_not_take_block():
    parsed = parse_response("[READ_FILE: package.json]\n```bash\nnpm ci\n```")

    assert parsed.tool_calls[0].content is None
    assert parsed.first_command.command == "npm ci"


def test_tool_arguments_are_trimmed():
    parsed = parse_response("[MKDIR:   build/out  ] [READ_FILE:a.txt]")

    assert [(c.verb, c.argument) for c in parsed.tool_calls] == [
        (ToolVerb.MKDIR, "build/out"),
        (ToolVerb.READ_FILE, "a.txt"),
    ]


def test_sentinels():
    for kind in SentinelKind:
        parsed = parse_response(f"I am not sure how to proceed. [{kind.value}]")
        assert isinstance(parsed.sentinel, Sentinel)
        assert parsed.sentinel.kind is kind

    assert parse_response("All done.").sentinel is None


def test_directives():
    parsed = parse_response("[CANCEL] that took too long\n[NEW_TAB]")

    assert [d.kind for d in parsed.directives] == [DirectiveKind.CANCEL, DirectiveKind.NEW_TAB]


def test_completion_and_narrative():
    parsed = parse_response(
        "Mission Report:\n- Installed dependencies\n- Started the dev server\nTask Complete"
    )

    assert parsed.is_complete
    assert parsed.narrative() == "- Installed dependencies\n- Started the dev server"


def test_narrative_without_report_header():
    parsed = parse_response("Everything is set up. task complete")

    assert parsed.is_complete
    assert parsed.narrative() == "Everything is set up."


def test_plain_text_is_preserved():
    text = "Just some explanation with [brackets] in it."
    parsed = parse_response(text)

    assert parsed.segments == [PlainText(text=text, start=0)]
    assert not parsed.is_complete
