"""Backtick key/text command language."""

from .parser import (
    DslParseError,
    KEY_MAPPING,
    KeyName,
    KeySegment,
    ParseResult,
    ParsedSegment,
    TextSegment,
    is_key_sequence,
    looks_like_dsl,
    parse_command,
)

__all__ = [
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
