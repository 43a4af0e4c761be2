"""Cleaning and interpretation of captured pane output."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


_CSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")
_OSC_PATTERN = re.compile(r"\x1b\][^\x07]*\x07")
_MODE_PATTERN = re.compile(r"\x1b[=>]")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_YES_NO_PATTERNS = (
    re.compile(r"\[y/n\]", re.IGNORECASE),
    re.compile(r"continue\?", re.IGNORECASE),
    re.compile(r"proceed\?", re.IGNORECASE),
    re.compile(r"do you want to", re.IGNORECASE),
    re.compile(r"would you like to", re.IGNORECASE),
)
_SELECTION_CURSOR = "❯"
_SELECTION_ARROW = re.compile(r"^\s*>\s+", re.MULTILINE)
_NUMBERED_OPTION = re.compile(r"^\s*(\d+)[.)]\s+")

YES_NO_WINDOW = 5
NUMBERED_WINDOW = 10


class PromptKind(str, Enum):
    YES_NO = "yes_no"
    SELECTION = "selection"
    NUMBERED = "numbered"


@dataclass(slots=True)
class CaptureSummary:
    full_output: str
    summary: str
    is_truncated: bool
    total_lines: int


def strip_control_sequences(text: str) -> str:
    """Remove ANSI escape sequences and stray control characters (tabs and newlines survive)."""

    text = _CSI_PATTERN.sub("", text)
    text = _OSC_PATTERN.sub("", text)
    text = _MODE_PATTERN.sub("", text)
    return _CONTROL_PATTERN.sub("", text)


def clean_output(text: str) -> str:
    """Strip control sequences, trailing whitespace, and blank edge lines."""

    lines = [line.rstrip() for line in strip_control_sequences(text).split("\n")]
    start = 0
    end = len(lines) - 1
    while start < len(lines) and not lines[start].strip():
        start += 1
    while end >= 0 and not lines[end].strip():
        end -= 1
    if start > end:
        return ""
    return "\n".join(lines[start : end + 1])


def summarize_capture(output: str, first_lines: int = 30, last_lines: int = 20) -> CaptureSummary:
    """Clean a raw capture and build a head+tail summary.

    With ``first_lines == 0`` the summary is the last ``last_lines`` lines only.
    """

    full_output = clean_output(output)
    lines = full_output.split("\n")
    total_lines = len(lines)

    if first_lines == 0:
        tail = lines[-last_lines:] if last_lines > 0 else []
        return CaptureSummary(
            full_output=full_output,
            summary="\n".join(tail),
            is_truncated=total_lines > last_lines,
            total_lines=total_lines,
        )

    if total_lines <= first_lines + last_lines:
        return CaptureSummary(
            full_output=full_output,
            summary=full_output,
            is_truncated=False,
            total_lines=total_lines,
        )

    omitted = total_lines - first_lines - last_lines
    tail = lines[-last_lines:] if last_lines > 0 else []
    summary = (
        "\n".join(lines[:first_lines])
        + f"\n\n... ({omitted} lines omitted) ...\n\n"
        + "\n".join(tail)
    )
    return CaptureSummary(
        full_output=full_output,
        summary=summary,
        is_truncated=True,
        total_lines=total_lines,
    )


def has_yes_no_marker(output: str) -> bool:
    tail = "\n".join(clean_output(output).split("\n")[-YES_NO_WINDOW:])
    return any(pattern.search(tail) for pattern in _YES_NO_PATTERNS)


def has_selection_marker(output: str) -> bool:
    cleaned = clean_output(output)
    return _SELECTION_CURSOR in cleaned or bool(_SELECTION_ARROW.search(cleaned))


def has_numbered_options(output: str) -> bool:
    """Return True for two or more consecutively numbered lines near the end."""

    recent = clean_output(output).split("\n")[-NUMBERED_WINDOW:]
    run = 0
    previous = 0
    for line in recent:
        match = _NUMBERED_OPTION.match(line)
        if not match:
            continue
        number = int(match.group(1))
        if previous == 0 or number == previous + 1:
            run += 1
        else:
            run = 1
        previous = number
        if run >= 2:
            return True
    return False


def detect_blocking_prompt(output: str) -> PromptKind | None:
    if has_yes_no_marker(output):
        return PromptKind.YES_NO
    if has_selection_marker(output):
        return PromptKind.SELECTION
    if has_numbered_options(output):
        return PromptKind.NUMBERED
    return None


def agent_is_ready(output: str) -> bool:
    """Return True when a capture shows the agent's input prompt."""

    return ">" in output and any(
        marker in output for marker in ("─" * 6, "claude.com", "? for shortcuts")
    )


__all__ = [
    "CaptureSummary",
    "PromptKind",
    "agent_is_ready",
    "clean_output",
    "detect_blocking_prompt",
    "has_numbered_options",
    "has_selection_marker",
    "has_yes_no_marker",
    "strip_control_sequences",
    "summarize_capture",
]
