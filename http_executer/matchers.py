"""Matcher and extractor contracts, plus the stock rules.

The executer only relies on the two protocols below. The concrete rules are
small reference implementations that select a part of the response and test
it with substrings, regular expressions, status codes or timing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, Protocol, runtime_checkable

from http_executer.models import HTTPResponse, MatcherCondition

PART_BODY = "body"
PART_HEADER = "header"
PART_ALL = "all"
_PARTS = (PART_BODY, PART_HEADER, PART_ALL)


@runtime_checkable
class Matcher(Protocol):
    """Boolean rule evaluated against one response."""

    name: str

    def match(
        self, response: HTTPResponse, body: str, headers: str, duration: float
    ) -> bool: ...


@runtime_checkable
class Extractor(Protocol):
    """Rule producing zero or more strings from one response.

    `extract` returns a lazy, single-pass iterator.
    """

    name: str
    internal: bool

    def extract(self, response: HTTPResponse, body: str, headers: str) -> Iterator[str]: ...


def select_part(part: str, body: str, headers: str) -> str:
    """Return the response text a rule operates on."""
    if part == PART_HEADER:
        return headers
    if part == PART_ALL:
        return f"{headers}\n{body}"
    return body


def _check_part(part: str) -> None:
    if part not in _PARTS:
        raise ValueError(f"unknown response part '{part}', expected one of {_PARTS}")


def _combine(hits: Iterator[bool], condition: MatcherCondition) -> bool:
    if condition == MatcherCondition.AND:
        return all(hits)
    return any(hits)


@dataclass
class StatusMatcher:
    status: list[int]
    name: str = ""
    negative: bool = False

    def match(
        self, response: HTTPResponse, body: str, headers: str, duration: float
    ) -> bool:
        return (response.status_code in self.status) != self.negative


@dataclass
class WordMatcher:
    """Matches when the words appear in the selected part.

    `condition` combines the individual words, independently of the
    executer-level combination of matchers.
    """

    words: list[str]
    name: str = ""
    part: str = PART_BODY
    condition: MatcherCondition = MatcherCondition.OR
    case_insensitive: bool = False
    negative: bool = False

    def __post_init__(self) -> None:
        _check_part(self.part)

    def match(
        self, response: HTTPResponse, body: str, headers: str, duration: float
    ) -> bool:
        corpus = select_part(self.part, body, headers)
        if self.case_insensitive:
            corpus = corpus.lower()
            words = [word.lower() for word in self.words]
        else:
            words = self.words
        matched = _combine((word in corpus for word in words), self.condition)
        return matched != self.negative


@dataclass
class RegexMatcher:
    regex: list[str]
    name: str = ""
    part: str = PART_BODY
    condition: MatcherCondition = MatcherCondition.OR
    negative: bool = False
    _compiled: list[re.Pattern[str]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        _check_part(self.part)
        self._compiled = [re.compile(pattern) for pattern in self.regex]

    def match(
        self, response: HTTPResponse, body: str, headers: str, duration: float
    ) -> bool:
        corpus = select_part(self.part, body, headers)
        matched = _combine(
            (pattern.search(corpus) is not None for pattern in self._compiled),
            self.condition,
        )
        return matched != self.negative


@dataclass
class DurationMatcher:
    """Matches responses that took at least `min_seconds` to arrive."""

    min_seconds: float
    name: str = ""
    negative: bool = False

    def match(
        self, response: HTTPResponse, body: str, headers: str, duration: float
    ) -> bool:
        return (duration >= self.min_seconds) != self.negative


@dataclass
class RegexExtractor:
    """Yields every regex match (or capture group) found in the selected part."""

    regex: list[str]
    name: str = ""
    group: int = 0
    part: str = PART_BODY
    internal: bool = False
    _compiled: list[re.Pattern[str]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        _check_part(self.part)
        self._compiled = [re.compile(pattern) for pattern in self.regex]

    def extract(self, response: HTTPResponse, body: str, headers: str) -> Iterator[str]:
        corpus = select_part(self.part, body, headers)
        for pattern in self._compiled:
            for found in pattern.finditer(corpus):
                yield found.group(self.group)
