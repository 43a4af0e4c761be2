"""Notification channel boundary and chunked delivery."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol, runtime_checkable


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2500
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF = 1.0
FENCE = "```"


class NotificationError(RuntimeError):
    """Raised when a notification cannot be delivered."""


@runtime_checkable
class NotificationChannel(Protocol):
    """Minimal chat API used by the orchestrator and progress tracker."""

    async def post(self, context_id: str, text: str) -> str:
        ...

    async def update(self, message_ref: str, text: str) -> None:
        ...


@dataclass(slots=True)
class OutboxMessage:
    ref: str
    context_id: str
    text: str
    sequence: int
    created_at: datetime
    updated_at: datetime
    revisions: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "ref": self.ref,
            "context_id": self.context_id,
            "text": self.text,
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "revisions": self.revisions,
        }


@dataclass
class OutboxChannel:
    """In-process channel that keeps messages per context for MCP clients to read.

    ``fail_posts`` / ``fail_updates`` make the next N calls raise
    :class:`NotificationError`.
    """

    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    fail_posts: int = 0
    fail_updates: int = 0
    _messages: dict[str, OutboxMessage] = field(default_factory=dict, init=False)
    _by_context: defaultdict[str, list[str]] = field(
        default_factory=lambda: defaultdict(list), init=False
    )

    async def post(self, context_id: str, text: str) -> str:
        if self.fail_posts > 0:
            self.fail_posts -= 1
            raise NotificationError(f"post to {context_id} rejected")
        sequence = len(self._by_context[context_id]) + 1
        ref = f"{context_id}:{sequence}"
        now = self.clock()
        self._messages[ref] = OutboxMessage(
            ref=ref,
            context_id=context_id,
            text=text,
            sequence=sequence,
            created_at=now,
            updated_at=now,
        )
        self._by_context[context_id].append(ref)
        return ref

    async def update(self, message_ref: str, text: str) -> None:
        if self.fail_updates > 0:
            self.fail_updates -= 1
            raise NotificationError(f"update of {message_ref} rejected")
        message = self._messages.get(message_ref)
        if message is None:
            raise NotificationError(f"Unknown message reference: {message_ref}")
        message.text = text
        message.updated_at = self.clock()
        message.revisions += 1

    def read(self, context_id: str, after: int = 0) -> list[OutboxMessage]:
        """Return messages for a context with a sequence greater than ``after``."""

        return [
            self._messages[ref]
            for ref in self._by_context.get(context_id, [])
            if self._messages[ref].sequence > after
        ]

    def get(self, message_ref: str) -> OutboxMessage | None:
        return self._messages.get(message_ref)

    def texts(self, context_id: str) -> list[str]:
        return [message.text for message in self.read(context_id)]


def neutralize_fences(text: str) -> str:
    """Replace embedded triple backticks so chunk wrapping cannot be broken."""

    return text.replace(FENCE, "'''") if text else ""


def split_message(text: str, max_length: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split on the last newline inside each window, falling back to a hard cut."""

    if not text:
        return []
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    position = 0
    while position < len(text):
        remaining = len(text) - position
        if remaining <= max_length:
            chunks.append(text[position:])
            break
        window = text[position : position + max_length]
        cut = window.rfind("\n")
        length = cut + 1 if cut > 0 else max_length
        chunks.append(text[position : position + length])
        position += length
    return chunks


def add_split_indicators(chunks: list[str]) -> list[str]:
    if len(chunks) <= 1:
        return list(chunks)
    total = len(chunks)
    return [f"[{index}/{total}]\n{chunk}" for index, chunk in enumerate(chunks, start=1)]


def wrap_in_code_blocks(chunks: list[str]) -> list[str]:
    wrapped: list[str] = []
    for chunk in chunks:
        if chunk.startswith(FENCE) and chunk.endswith(FENCE):
            wrapped.append(chunk)
        else:
            wrapped.append(f"{FENCE}\n{chunk}\n{FENCE}")
    return wrapped


async def send_large_message(
    channel: NotificationChannel,
    context_id: str,
    text: str,
    *,
    max_length: int = DEFAULT_CHUNK_SIZE,
    wrap: bool = True,
    indicators: bool = True,
    delay: float = 0.5,
    retries: int = DEFAULT_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> list[str]:
    """Post ``text`` in chunks, retrying each chunk with exponential backoff.

    Returns the refs of the chunks that were delivered. A chunk that still
    fails after ``retries`` attempts is replaced by a short failure notice and
    delivery moves on; this function never raises.
    """

    sleep = sleep or asyncio.sleep
    chunks = split_message(neutralize_fences(text) if wrap else text, max_length)
    if wrap:
        chunks = wrap_in_code_blocks(chunks)
    if indicators:
        chunks = add_split_indicators(chunks)

    refs: list[str] = []
    for index, chunk in enumerate(chunks, start=1):
        if index > 1:
            await sleep(delay)
        for attempt in range(1, retries + 1):
            try:
                refs.append(await channel.post(context_id, chunk))
                break
            except NotificationError as exc:
                logger.warning(
                    "Chunk delivery failed",
                    extra={
                        "context_id": context_id,
                        "chunk": index,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
                if attempt < retries:
                    await sleep(backoff * (2 ** (attempt - 1)))
        else:
            logger.error(
                "Giving up on chunk", extra={"context_id": context_id, "chunk": index}
            )
            try:
                await channel.post(context_id, f"⚠️ Message delivery failed: part [{index}]")
            except NotificationError as exc:
                logger.error(
                    "Failed to post delivery notice",
                    extra={"context_id": context_id, "error": str(exc)},
                )
    return refs


async def post_safely(channel: NotificationChannel, context_id: str, text: str) -> str | None:
    """Post a single message, logging a failure instead of raising."""

    try:
        return await channel.post(context_id, text)
    except NotificationError as exc:
        logger.error("Failed to post notification", extra={"context_id": context_id, "error": str(exc)})
        return None


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "NotificationChannel",
    "NotificationError",
    "OutboxChannel",
    "OutboxMessage",
    "add_split_indicators",
    "neutralize_fences",
    "post_safely",
    "send_large_message",
    "split_message",
    "wrap_in_code_blocks",
]
