"""Chat message formatting for job lifecycle notifications."""

from __future__ import annotations

from typing import Mapping

from ..jobs.models import Job
from ..tmux.output import CaptureSummary, PromptKind


PROMPT_PREVIEW_CHARS = 200


def code_block(text: str) -> str:
    return f"```\n{text}\n```"


def inline(text: str) -> str:
    return f"`{text}`"


def bold(text: str) -> str:
    return f"*{text}*"


def format_elapsed(seconds: float) -> str:
    total = max(int(seconds), 0)
    return f"{total // 60}m {total % 60}s"


def format_job_started(job: Job, project_name: str) -> str:
    preview = job.payload
    length_note = ""
    if len(preview) > PROMPT_PREVIEW_CHARS:
        preview = preview[:PROMPT_PREVIEW_CHARS] + "..."
        length_note = f" (first {PROMPT_PREVIEW_CHARS} of {len(job.payload)} characters)"
    return "\n".join(
        [
            f"🔄 {bold('Job started')}",
            "",
            f"{bold('Job ID')}: {job.id}",
            f"{bold('Project')}: {project_name}",
            f"{bold('Kind')}: {job.kind.value}",
            f"{bold('Prompt')}{length_note}:",
            code_block(preview),
        ]
    )


def format_job_completed(job: Job, capture: CaptureSummary) -> str:
    truncated = " (summarized)" if capture.is_truncated else ""
    return "\n".join(
        [
            f"✅ Job completed: {job.id}",
            f"Output lines: {capture.total_lines}{truncated}",
            "",
            capture.summary,
        ]
    )


def format_job_failed(job: Job, error: str) -> str:
    return "\n".join(
        [
            f"❌ {bold('Job failed')}",
            "",
            f"{bold('Job ID')}: {job.id}",
            f"{bold('Error')}:",
            code_block(error),
        ]
    )


def format_job_cancelled(job: Job) -> str:
    return f"🚫 {bold('Job cancelled')}: {job.id}"


def format_dsl_completed(job: Job, capture: CaptureSummary) -> str:
    return "\n".join(
        [
            f"✅ Command completed: {job.id}",
            f"Command: {job.payload}",
            "",
            "Screen:",
            capture.summary,
        ]
    )


def format_dsl_guide() -> str:
    return "\n".join(
        [
            bold("💡 Command syntax"),
            "",
            "Wrap keys or text in backticks to send them to the session:",
            "",
            bold("Keys:"),
            f"• {inline('ddd')} → Down three times",
            f"• {inline('uuu')} → Up three times",
            f"• {inline('e')} → Enter",
            f"• {inline('s')} → Space",
            f"• {inline('r')}, {inline('l')} → Right, Left",
            "",
            bold("Text:"),
            f"• {inline('my-app')} → types \"my-app\"",
            f"• {inline('git commit')} → types \"git commit\"",
            "",
            bold("Mixed:"),
            f"• {inline('ddd')} my-app {inline('e')} → Down ×3, \"my-app\", Enter",
            "",
            "⚠️ Key letters (r, l, u, d, e, s) and other characters cannot share one backtick group.",
        ]
    )


def format_mixed_char_error(key_chars: list[str], other_chars: list[str]) -> str:
    keys = ", ".join(f"'{char}'" for char in key_chars)
    others = ", ".join(f"'{char}'" for char in other_chars)
    return "\n".join(
        [
            f"❌ {bold('Mixed characters in a backtick group')}",
            "",
            f"{bold('Key letters')}: {keys}",
            f"{bold('Other characters')}: {others}",
            "",
            "Put keys and text in separate backtick groups,",
            f"for example {inline('ddd')} text {inline('e')} instead of {inline('dddtext')}.",
        ]
    )


def format_command_error(error: str) -> str:
    return "\n".join(
        [
            f"❌ {bold('Command failed')}",
            "",
            f"{bold('Error')}: {error}",
            "",
            "Check the tmux session and try again.",
        ]
    )


_PROMPT_HELP: Mapping[PromptKind, list[str]] = {
    PromptKind.YES_NO: [
        "💡 A yes/no prompt is waiting.",
        "",
        bold("Reply with:"),
        f"• {inline('y')} for yes",
        f"• {inline('n')} for no",
    ],
    PromptKind.SELECTION: [
        "💡 A selection menu is waiting.",
        "",
        bold("Navigate with:"),
        f"• {inline('u')} / {inline('d')} to move up or down",
        f"• {inline('l')} / {inline('r')} to move left or right",
        f"• {inline('e')} to confirm",
        "",
        f"_Example: {inline('ddd')} then {inline('e')}_",
    ],
    PromptKind.NUMBERED: [
        "💡 A numbered choice is waiting.",
        "",
        bold("Reply with:"),
        f"• the option number followed by {inline('e')}",
        "",
        f"_Example: {inline('2')} {inline('e')}_",
    ],
}


def format_prompt_help(kind: PromptKind, output: str | None = None) -> str:
    lines = list(_PROMPT_HELP[PromptKind(kind)])
    if output:
        lines = [code_block(output), "", *lines]
    return "\n".join(lines)


def format_queue_summary(context_id: str, counts: Mapping[str, int]) -> str:
    order = ("pending", "running", "completed", "failed", "cancelled")
    parts = [f"{name}={counts.get(name, 0)}" for name in order]
    return f"Queue {context_id}: total={counts.get('total', 0)} " + " ".join(parts)


def format_progress(elapsed_seconds: float, output: str) -> str:
    return f"🔄 Working... (elapsed {format_elapsed(elapsed_seconds)})\n\n{code_block(output)}"


__all__ = [
    "bold",
    "code_block",
    "format_command_error",
    "format_dsl_completed",
    "format_dsl_guide",
    "format_elapsed",
    "format_job_cancelled",
    "format_job_completed",
    "format_job_failed",
    "format_job_started",
    "format_mixed_char_error",
    "format_progress",
    "format_prompt_help",
    "format_queue_summary",
    "inline",
]
