"""Tests for error pattern classification."""

from termai.agent.patterns import ErrorCategory, ErrorPatternMatcher, _compile


def test_port_in_use_extracts_port():
    matcher = ErrorPatternMatcher()

    match = matcher.analyze("Error: listen EADDRINUSE: address already in use :::3000")

    assert match is not None
    assert match.name == "port_in_use"
    assert match.fields == {"port": "3000"}


def test_command_not_found():
    category = ErrorPatternMatcher().classify("bash: npm: command not found")

    assert category is not None
    assert category.name == "command_not_found"
    assert category.priority == 85


def test_permission_denied_extracts_quoted_path():
    match = ErrorPatternMatcher().analyze("EACCES: permission denied, open '/etc/hosts'")

    assert match.name == "permission_denied"
    assert match.fields == {"path": "/etc/hosts"}


def test_specific_category_beats_generic_error():
    category = ErrorPatternMatcher().classify("Error: Cannot find module 'express'")

    assert category.name == "dependency_error"


def test_higher_priority_wins_regardless_of_declaration_order():
    low = ErrorCategory(name="low", priority=1, patterns=_compile(r"boom"))
    high = ErrorCategory(name="high", priority=50, patterns=_compile(r"boom"))

    matcher = ErrorPatternMatcher((low, high))

    assert matcher.classify("boom") is high
    assert [c.name for c in matcher.categories] == ["high", "low"]


def test_clean_output_has_no_category():
    matcher = ErrorPatternMatcher()

    assert matcher.classify("") is None
    assert matcher.classify("Compiled 12 files in 0.4s") is None
    assert matcher.analyze("all good") is None


def test_get_by_name():
    matcher = ErrorPatternMatcher()

    assert matcher.get("git_conflict").priority == 70
    assert matcher.get("missing") is None
