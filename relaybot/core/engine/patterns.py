# relaybot/core/engine/patterns.py
"""
Pattern matching for command, hears and action handlers.

A pattern is one of:

    Exact("echo")                     equality (command mode: first token, prefix-insensitive)
    Regex(re.compile(r"\\d{4}"))       search anywhere in the input
    AnyOf((Exact("a"), Exact("b")))   any alternative, tried in order

``compile_pattern`` turns the user-facing spec (str, compiled regex, or a
list/tuple of those) into a Pattern once, at registration time.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from relaybot.core.engine.domain import COMMAND_PREFIXES


def _strip_prefix(token: str) -> str:
    if token and token[0] in COMMAND_PREFIXES:
        return token[1:]
    return token


@dataclass(frozen=True)
class Exact:
    value: str

    def matches(self, text: Optional[str], *, command: bool = False) -> bool:
        if not text:
            return False
        if command:
            tokens = text.split(maxsplit=1)
            if not tokens:
                return False
            return _strip_prefix(tokens[0]) == _strip_prefix(self.value)
        return text == self.value


@dataclass(frozen=True)
class Regex:
    regex: re.Pattern

    def matches(self, text: Optional[str], *, command: bool = False) -> bool:
        if not text:
            return False
        return self.regex.search(text) is not None


@dataclass(frozen=True)
class AnyOf:
    options: tuple

    def matches(self, text: Optional[str], *, command: bool = False) -> bool:
        if not text:
            return False
        for option in self.options:
            if option.matches(text, command=command):
                return True
        return False


Pattern = Union[Exact, Regex, AnyOf]
PatternSpec = Union[str, re.Pattern, Sequence, Pattern]


def compile_pattern(spec: PatternSpec) -> Pattern:
    """
    Build a Pattern from a handler spec.

    Raises:
        TypeError: unsupported spec type
        ValueError: empty list of alternatives
    """
    if isinstance(spec, (Exact, Regex, AnyOf)):
        return spec
    if isinstance(spec, str):
        return Exact(spec)
    if isinstance(spec, re.Pattern):
        return Regex(spec)
    if isinstance(spec, (list, tuple)):
        if not spec:
            raise ValueError("Pattern list must not be empty")
        return AnyOf(tuple(compile_pattern(item) for item in spec))
    raise TypeError(
        f"Unsupported pattern spec {spec!r}: expected str, compiled regex, or a list of those"
    )


def matches(text: Optional[str], spec: PatternSpec, *, command: bool = False) -> bool:
    """Check whether ``text`` matches ``spec``"""
    return compile_pattern(spec).matches(text, command=command)
