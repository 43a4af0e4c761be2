from __future__ import annotations

import pytest

from relay_mcp.dsl import (
    DslParseError,
    KeyName,
    KeySegment,
    TextSegment,
    is_key_sequence,
    looks_like_dsl,
    parse_command,
)


def test_key_group_yields_one_segment_per_letter() -> None:
    result = parse_command("`ddd`")

    assert result.success
    assert result.segments == (
        KeySegment(KeyName.DOWN),
        KeySegment(KeyName.DOWN),
        KeySegment(KeyName.DOWN),
    )


def test_every_key_letter_maps_in_order() -> None:
    result = parse_command("`rludes`")

    assert [segment.key for segment in result.segments] == [
        KeyName.RIGHT,
        KeyName.LEFT,
        KeyName.UP,
        KeyName.DOWN,
        KeyName.ENTER,
        KeyName.SPACE,
    ]
    assert not any(isinstance(segment, TextSegment) for segment in result.segments)


def test_mixed_message_keeps_order_and_free_text() -> None:
    result = parse_command("`ddd` my-app `e`")

    assert result.success
    assert result.segments == (
        KeySegment(KeyName.DOWN),
        KeySegment(KeyName.DOWN),
        KeySegment(KeyName.DOWN),
        TextSegment(" my-app "),
        KeySegment(KeyName.ENTER),
    )


def test_group_without_key_letters_is_literal_text() -> None:
    result = parse_command("`git commit`")

    assert result.success
    assert result.segments == (TextSegment("git commit"),)


def test_ambiguous_group_fails_whole_parse() -> None:
    result = parse_command("`e` `ddx` `e`")

    assert not result.success
    assert result.segments == ()
    assert isinstance(result.error, DslParseError)
    assert result.error.key_chars == ["d", "d"]
    assert result.error.other_chars == ["x"]
    assert "'d', 'd'" in str(result.error)
    assert "'x'" in str(result.error)


def test_whitespace_between_groups_is_dropped() -> None:
    result = parse_command("`u`   `d`")

    assert result.segments == (KeySegment(KeyName.UP), KeySegment(KeyName.DOWN))


def test_empty_input_succeeds_with_no_segments() -> None:
    result = parse_command("")

    assert result.success
    assert result.segments == ()
    assert result.error is None


def test_parse_is_pure() -> None:
    message = "`ll` hello `s`"

    first = parse_command(message)
    second = parse_command(message)

    assert first == second
    assert message == "`ll` hello `s`"


def test_is_key_sequence_classifies_groups() -> None:
    assert is_key_sequence("udlr")
    assert not is_key_sequence("npm")
    assert not is_key_sequence("   ")
    for ambiguous in ("ux", "hello_e", "d d"):
        with pytest.raises(DslParseError):
            is_key_sequence(ambiguous)


def test_looks_like_dsl_requires_backtick() -> None:
    assert looks_like_dsl("run `e`")
    assert not looks_like_dsl("explain this function")
