"""Tests for stuck-loop detection."""

from termai.agent.state import CommandHistoryEntry
from termai.agent.stuck import (
    GENERIC_SUGGESTIONS,
    SIMILAR_COMMAND_SUGGESTIONS,
    StuckDetector,
    generate_suggestions,
)


def entry(command: str, exit_code: int, category: str | None = None) -> CommandHistoryEntry:
    return CommandHistoryEntry(command=command, exit_code=exit_code, error_category=category)


def test_needs_two_entries():
    detector = StuckDetector()

    assert not detector.evaluate([]).is_stuck
    assert not detector.evaluate([entry("foo", 127, "command_not_found")]).is_stuck


def test_three_failures_fire_first_check():
    window = [
        entry("ls", 0),
        entry("foo", 127, "command_not_found"),
        entry("foo --help", 127, "command_not_found"),
        entry("foo", 127, "command_not_found"),
    ]

    verdict = StuckDetector().evaluate(window)

    assert verdict.is_stuck
    assert verdict.reason == "3 consecutive command failures detected (foo)"
    assert verdict.failed_commands == ["foo", "foo --help", "foo"]
    assert "The required tool may not be installed. Should I install it?" in verdict.suggestions


def test_similar_commands_fire_even_when_successful():
    window = [entry("git status", 0), entry("git log", 0), entry("git diff", 0)]

    verdict = StuckDetector().evaluate(window)

    assert verdict.is_stuck
    assert verdict.reason == 'Repeated attempts with similar "git" commands'
    assert verdict.suggestions == list(SIMILAR_COMMAND_SUGGESTIONS)
    assert verdict.failed_commands == ["git status", "git log", "git diff"]


def test_recurring_error_with_custom_thresholds():
    detector = StuckDetector(max_failures=2, max_similar=5)
    window = [entry("npm start", 0, "port_in_use"), entry("yarn dev", 0, "port_in_use")]

    verdict = detector.evaluate(window)

    # Failure count does not fire because both commands exited 0
    assert verdict.reason == 'Same error "port_in_use" occurring repeatedly'
    assert verdict.failed_commands == ["npm start", "yarn dev"]
    assert "Should I try a different port?" in verdict.suggestions


def test_mixed_window_is_not_stuck():
    window = [
        entry("npm install", 0),
        entry("npm test", 1, "generic_error"),
        entry("python main.py", 0),
    ]

    assert not StuckDetector().evaluate(window).is_stuck


def test_suggestions_are_deduplicated():
    suggestions = generate_suggestions(["port_in_use", "port_in_use", "permission_denied"])

    assert len(suggestions) == len(set(suggestions)) == 4


def test_unknown_categories_get_generic_suggestions():
    assert generate_suggestions([]) == list(GENERIC_SUGGESTIONS)
    assert generate_suggestions(["generic_error"]) == list(GENERIC_SUGGESTIONS)
