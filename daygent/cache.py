"""
Optional in-process response cache.

LRU with TTL, keyed by provider, workspace and the request's sampling
parameters. Only responses that carry token usage are stored.
"""

import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from daygent.schemas import LLMRequest, LLMResponse

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_TEMPERATURE = 0.7


@dataclass
class CacheEntry:
    response: LLMResponse
    expires_at: float


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total * 100


class ResponseCache:
    """
    Thread-safe LRU cache of provider responses.

    Reads refresh an entry's age, so frequently used answers stay warm.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()
        self._stats = CacheStats(max_size=max_size)

    @staticmethod
    def make_key(provider: str, request: LLMRequest, workspace_id: str) -> str:
        key_data = {
            "provider": provider,
            "workspace_id": workspace_id,
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
            "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
            "max_tokens": request.max_tokens,
        }
        digest = hashlib.sha256(json.dumps(key_data, sort_keys=True).encode("utf-8")).hexdigest()
        return f"llm:{provider}:{digest}"

    def get(self, provider: str, request: LLMRequest, workspace_id: str) -> Optional[LLMResponse]:
        key = self.make_key(provider, request, workspace_id)
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None or now > entry.expires_at:
                if entry is not None:
                    del self._entries[key]
                self._stats.misses += 1
                return None
            entry.expires_at = now + self.ttl_seconds
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.response

    def set(
        self,
        provider: str,
        request: LLMRequest,
        workspace_id: str,
        response: LLMResponse,
    ) -> None:
        if response.usage is None:
            return
        key = self.make_key(provider, request, workspace_id)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._stats.evictions += 1
            self._entries[key] = CacheEntry(response, self._clock() + self.ttl_seconds)
            self._entries.move_to_end(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        with self._lock:
            self._stats.size = len(self._entries)
            return CacheStats(**vars(self._stats))
