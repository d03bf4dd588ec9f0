from __future__ import annotations

import copy
import json
import logging
import math
from typing import Iterable, List

from orchestra.schemas.messages import AgentMessage

LOGGER = logging.getLogger(__name__)

MAX_HISTORY = 50
TRIM_THRESHOLD = 0.8
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def message_tokens(message: AgentMessage) -> int:
    tokens = estimate_tokens(message.content)
    for call in message.tool_calls:
        tokens += estimate_tokens(json.dumps(call.input, default=str, ensure_ascii=False))
    for result in message.tool_results:
        if result.output is not None:
            output = result.output if isinstance(result.output, str) else json.dumps(result.output, default=str)
            tokens += estimate_tokens(output)
        tokens += estimate_tokens(result.error or "")
    return tokens


class Transcript:
    """Append-only conversation log owned by the agent executing a task.

    Token usage is tracked incrementally on append. Once the log reaches
    ``TRIM_THRESHOLD`` of ``max_history`` callers should invoke ``trim()``,
    which keeps the first message plus the most recent ``max_history - 1``.
    """

    def __init__(self, max_history: int = MAX_HISTORY) -> None:
        if max_history < 2:
            raise ValueError("max_history must keep at least the first and the latest message")
        self.max_history = max_history
        self._turns: List[AgentMessage] = []
        self._tokens = 0

    def reset(self, initial: Iterable[AgentMessage] | None = None) -> None:
        self._turns = []
        self._tokens = 0
        for message in initial or []:
            self.append(message)

    def append(self, message: AgentMessage) -> None:
        self._tokens += message_tokens(message)
        self._turns.append(message)

    @property
    def token_count(self) -> int:
        return self._tokens

    def needs_trim(self) -> bool:
        return len(self._turns) >= self.max_history * TRIM_THRESHOLD

    def trim(self) -> bool:
        if len(self._turns) <= self.max_history:
            return False
        first = self._turns[0]
        recent = self._turns[-(self.max_history - 1):]
        self._turns = [first, *recent]
        self._tokens = sum(message_tokens(m) for m in self._turns)
        LOGGER.debug(
            "Trimmed history to %d messages (~%d tokens)", len(self._turns), self._tokens
        )
        return True

    def first(self) -> AgentMessage | None:
        return self._turns[0] if self._turns else None

    def last(self, k: int = 1) -> List[AgentMessage]:
        if k <= 0:
            return []
        return self._turns[-k:]

    def all(self) -> List[AgentMessage]:
        return list(self._turns)

    def snapshot(self) -> List[AgentMessage]:
        return copy.deepcopy(self._turns)

    def __len__(self) -> int:
        return len(self._turns)
