"""
Context window manager - trims prior turns before each model call
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from .config import ContextWindowConfig
from .serialization import estimate_size

logger = logging.getLogger(__name__)


@dataclass
class ContextWindow:
    """Snapshot of the history sent with the latest model call"""
    turns: list[dict] = field(default_factory=list)
    token_estimate: int = 0
    tokens_saved: int = 0


def _is_tool_result_message(message: dict) -> bool:
    content = message.get("content")
    return (
        message.get("role") == "user"
        and isinstance(content, list)
        and bool(content)
        and all(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)
    )


class ContextWindowManager:
    """
    Context window manager

    Called once per model turn with the full message history. Messages are
    never mutated; a trimmed copy is returned.

    1. System messages and the most recent ``keep_recent_messages`` are kept
       verbatim.
    2. Older tool results longer than ``max_tool_result_chars`` are replaced
       by a preview.
    3. While the estimate exceeds ``max_context_tokens`` the oldest turns
       are dropped, keeping tool_use / tool_result pairs together.

    ``tokens_saved`` accumulates the difference between the untrimmed and
    trimmed estimate over every call.
    """

    def __init__(self, config: ContextWindowConfig | None = None):
        self.config = config or ContextWindowConfig()
        self._tokens_saved = 0
        self._window = ContextWindow()

    @property
    def tokens_saved(self) -> int:
        return self._tokens_saved

    @property
    def window(self) -> ContextWindow:
        return self._window

    def estimate_tokens(self, messages: Any) -> int:
        size = estimate_size(messages)
        return math.ceil(size / self.config.chars_per_token) if size else 0

    def manage(self, messages: list[dict]) -> list[dict]:
        before = self.estimate_tokens(messages)

        trimmed = self._compact_tool_results(messages)
        trimmed = self._drop_oldest(trimmed)

        after = self.estimate_tokens(trimmed)
        saved = max(0, before - after)
        self._tokens_saved += saved
        self._window = ContextWindow(
            turns=trimmed,
            token_estimate=after,
            tokens_saved=self._tokens_saved,
        )
        if saved:
            logger.info(
                f"Context trimmed from ~{before:,} to ~{after:,} tokens "
                f"({len(messages)} -> {len(trimmed)} messages)"
            )
        return trimmed

    def reset(self) -> None:
        self._tokens_saved = 0
        self._window = ContextWindow()

    def _recent_start(self, messages: list[dict]) -> int:
        return max(0, len(messages) - self.config.keep_recent_messages)

    def _compact_tool_results(self, messages: list[dict]) -> list[dict]:
        recent_start = self._recent_start(messages)
        compacted = []
        for index, message in enumerate(messages):
            content = message.get("content")
            if index >= recent_start or not isinstance(content, list):
                compacted.append(message)
                continue
            compacted.append({
                **message,
                "content": [self._compact_block(block) for block in content],
            })
        return compacted

    def _compact_block(self, block: Any) -> Any:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            return block

        content = block.get("content")
        if isinstance(content, list):
            text = "\n".join(
                item.get("text", "") for item in content
                if isinstance(item, dict) and item.get("type") == "text"
            )
        elif isinstance(content, str):
            text = content
        else:
            return block

        limit = self.config.max_tool_result_chars
        if len(text) <= limit:
            return block

        preview = text[:limit]
        omitted = len(text) - limit
        return {
            **block,
            "content": f"{preview}\n... [{omitted:,} chars of an earlier tool result omitted]",
        }

    def _drop_oldest(self, messages: list[dict]) -> list[dict]:
        if self.estimate_tokens(messages) <= self.config.max_context_tokens:
            return messages

        system = [m for m in messages if m.get("role") == "system"]
        turns = [m for m in messages if m.get("role") != "system"]
        keep = self.config.keep_recent_messages

        while len(turns) > keep and self.estimate_tokens(system + turns) > self.config.max_context_tokens:
            turns.pop(0)
            # A tool_result without its tool_use, or a leading assistant turn, is invalid
            while len(turns) > keep and (
                turns[0].get("role") == "assistant" or _is_tool_result_message(turns[0])
            ):
                turns.pop(0)

        return system + turns
