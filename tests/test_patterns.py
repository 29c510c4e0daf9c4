# tests/test_patterns.py
"""Tests for pattern matching (exact, regex, alternatives)"""
import re

import pytest

from relaybot.core.engine.patterns import AnyOf, Exact, Regex, compile_pattern, matches


class TestExact:
    def test_equality(self):
        assert matches("ping", "ping") is True
        assert matches("ping ", "ping") is False
        assert matches("Ping", "ping") is False

    def test_command_mode_compares_first_token(self):
        assert matches("echo hello world", "echo", command=True) is True
        assert matches("echoes", "echo", command=True) is False

    def test_command_mode_strips_one_prefix_on_both_sides(self):
        assert matches("/echo", "echo", command=True) is True
        assert matches("!echo", "echo", command=True) is True
        assert matches("echo", "/echo", command=True) is True
        assert matches("//echo", "echo", command=True) is False

    def test_plain_mode_keeps_prefix(self):
        assert matches("/echo", "echo") is False


class TestRegex:
    def test_search_anywhere(self):
        assert matches("order 2024 please", re.compile(r"\d{4}")) is True
        assert matches("order 20 please", re.compile(r"\d{4}")) is False

    def test_anchors_are_respected(self):
        assert matches("test123", re.compile(r"^test")) is True
        assert matches("a test", re.compile(r"^test")) is False


class TestAnyOf:
    def test_any_alternative(self):
        assert matches("B", ["A", "B"]) is True
        assert matches("C", ["A", "B"]) is False

    def test_mixed_alternatives(self):
        spec = ["hello", re.compile(r"^hi\b")]
        assert matches("hi there", spec) is True
        assert matches("hello", spec) is True
        assert matches("yo", spec) is False

    def test_nested_lists(self):
        assert matches("c", ["a", ["b", "c"]]) is True

    def test_command_mode_propagates(self):
        assert matches("/multi2 now", ["multi1", "multi2"], command=True) is True


class TestEmptyInput:
    @pytest.mark.parametrize("text", [None, ""])
    def test_never_matches(self, text):
        assert matches(text, "") is False
        assert matches(text, re.compile(r".*")) is False
        assert matches(text, ["", "x"]) is False
        assert matches(text, "echo", command=True) is False


class TestCompilePattern:
    def test_builds_tagged_variants(self):
        regex = re.compile(r"x")
        assert compile_pattern("a") == Exact("a")
        assert compile_pattern(regex) == Regex(regex)
        assert compile_pattern(("a", regex)) == AnyOf((Exact("a"), Regex(regex)))

    def test_compiled_pattern_is_returned_unchanged(self):
        pattern = Exact("a")
        assert compile_pattern(pattern) is pattern

    @pytest.mark.parametrize("spec", [42, None, {"a": 1}, 3.5])
    def test_invalid_spec_type(self, spec):
        with pytest.raises(TypeError):
            compile_pattern(spec)

    def test_invalid_nested_spec_type(self):
        with pytest.raises(TypeError):
            compile_pattern(["ok", 7])

    def test_empty_list(self):
        with pytest.raises(ValueError):
            compile_pattern([])
