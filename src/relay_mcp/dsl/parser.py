"""Backtick command language.

A message is split into backtick groups and the free text between them.
A group made only of key letters (``r l u d e s``) becomes one key press per
letter; a group with no key letters is sent as literal text; a group that
mixes both is rejected, and the whole parse fails.

    `ddd` my-app `e`   ->  Down, Down, Down, "my-app", Enter
    `git commit`       ->  "git commit"
    `ddx`              ->  error (key letters 'd', 'd' mixed with 'x')
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


logger = logging.getLogger(__name__)


class KeyName(str, Enum):
    """Named keys reachable from the command language."""

    RIGHT = "Right"
    LEFT = "Left"
    UP = "Up"
    DOWN = "Down"
    ENTER = "Enter"
    SPACE = "Space"


KEY_MAPPING: dict[str, KeyName] = {
    "r": KeyName.RIGHT,
    "l": KeyName.LEFT,
    "u": KeyName.UP,
    "d": KeyName.DOWN,
    "e": KeyName.ENTER,
    "s": KeyName.SPACE,
}

BACKTICK_PATTERN = re.compile(r"`([^`]+)`")


class DslParseError(ValueError):
    """Raised when a backtick group mixes key letters with other characters."""

    def __init__(self, group: str, key_chars: list[str], other_chars: list[str]) -> None:
        self.group = group
        self.key_chars = list(key_chars)
        self.other_chars = list(other_chars)
        keys = "', '".join(self.key_chars)
        others = "', '".join(self.other_chars)
        super().__init__(
            f"Ambiguous backtick group `{group}`: '{keys}' are key letters but '{others}' are not"
        )


@dataclass(frozen=True, slots=True)
class KeySegment:
    key: KeyName


@dataclass(frozen=True, slots=True)
class TextSegment:
    content: str


ParsedSegment = Union[KeySegment, TextSegment]


@dataclass(frozen=True, slots=True)
class ParseResult:
    success: bool
    segments: tuple[ParsedSegment, ...] = field(default_factory=tuple)
    error: DslParseError | None = None


def _split_groups(message: str) -> list[tuple[bool, str]]:
    """Return ``(is_backtick, content)`` pairs in input order."""

    pieces: list[tuple[bool, str]] = []
    last_index = 0
    for match in BACKTICK_PATTERN.finditer(message):
        if match.start() > last_index:
            pieces.append((False, message[last_index : match.start()]))
        pieces.append((True, match.group(1)))
        last_index = match.end()
    if last_index < len(message):
        pieces.append((False, message[last_index:]))
    return pieces


def is_key_sequence(content: str) -> bool:
    """Classify a backtick group.

    Returns True when every character is a key letter and False when none is.
    Raises :class:`DslParseError` for a mix of both.
    """

    if not content:
        return False

    key_chars = [char for char in content if char in KEY_MAPPING]
    other_chars = [char for char in content if char not in KEY_MAPPING]
    if key_chars and other_chars:
        raise DslParseError(content, key_chars, other_chars)
    return bool(key_chars)


def parse_command(message: str) -> ParseResult:
    """Parse a message into key and text segments."""

    segments: list[ParsedSegment] = []
    try:
        for is_backtick, content in _split_groups(message):
            if not is_backtick:
                if content.strip():
                    segments.append(TextSegment(content))
                continue
            if is_key_sequence(content):
                segments.extend(KeySegment(KEY_MAPPING[char]) for char in content)
            else:
                segments.append(TextSegment(content))
    except DslParseError as exc:
        logger.warning("Command parse failed", extra={"group": exc.group})
        return ParseResult(success=False, segments=(), error=exc)

    logger.debug("Parsed command", extra={"segments": len(segments)})
    return ParseResult(success=True, segments=tuple(segments))


def looks_like_dsl(message: str) -> bool:
    """Return True when the message should be routed as a key/text command."""

    return "`" in message


__all__ = [
    "BACKTICK_PATTERN",
    "DslParseError",
    "KEY_MAPPING",
    "KeyName",
    "KeySegment",
    "ParseResult",
    "ParsedSegment",
    "TextSegment",
    "is_key_sequence",
    "looks_like_dsl",
    "parse_command",
]
