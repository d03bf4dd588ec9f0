"""Pluggable caches for routing decisions and LLM responses."""

from __future__ import annotations

import hashlib
import json
import re
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")

_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(text: str) -> str:
    """Strip, casefold and collapse whitespace so trivially different prompts share a key."""

    return _WHITESPACE.sub(" ", text.strip()).casefold()


def routing_key(prompt: str) -> str:
    return hashlib.md5(normalize_prompt(prompt).encode("utf-8")).hexdigest()


def response_key(model: str, system_prompt: str, messages: Any, tool_names: Any) -> str:
    payload = json.dumps(
        {"model": model, "system": system_prompt, "messages": messages, "tools": tool_names},
        sort_keys=True,
        default=str,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Cache(ABC, Generic[V]):
    @abstractmethod
    def get(self, key: str) -> Optional[V]:
        """Return the cached value or ``None``."""

    @abstractmethod
    def set(self, key: str, value: V) -> None:
        """Store ``value`` under ``key``."""

    def delete(self, key: str) -> bool:
        return False

    def clear(self) -> None:
        return None


class NullCache(Cache[V]):
    """Cache that never stores anything; disables memoization."""

    def get(self, key: str) -> Optional[V]:
        return None

    def set(self, key: str, value: V) -> None:
        return None

    def __len__(self) -> int:
        return 0


class MemoryCache(Cache[V]):
    """In-process cache with LRU eviction and a per-entry time to live."""

    def __init__(
        self,
        max_size: int = 100,
        ttl: Optional[float] = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, value = entry
        if self.ttl is not None and self._clock() - stored_at > self.ttl:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock(), value)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
