"""Approximate-match cache of previously generated tickets.

Entries are partitioned by scope (the requesting organization) and matched on
normalized request text:

* identical text                 -> 1.0
* one text contains the other    -> shorter/longer * 0.9
* otherwise                      -> |common words| / |all words| (words > 3 chars)

Expiry is lazy (checked at lookup time); capacity is enforced on insert by
evicting the globally oldest entry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_THRESHOLD = 0.85


class ResponseCache(Protocol):
    """What the worker and the streaming transport need from a cache."""

    def lookup(self, scope: str, request_text: str) -> str | None: ...
    def insert(self, scope: str, request_text: str, content: str) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    scope: str
    normalized_request_text: str
    content: str
    created_at: float


@dataclass(frozen=True)
class CacheStats:
    total_items: int
    active_items: int
    expired_items: int
    max_size: int


def normalize_text(text: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return " ".join(text.split()).lower()


def normalize_scope(scope: str) -> str:
    return scope.strip().lower()


def _words(text: str) -> set[str]:
    return {w for w in text.split() if len(w) > 3}


def similarity(a: str, b: str) -> float:
    """Score two already-normalized texts in [0, 1]."""
    if a == b:
        return 1.0
    if a in b or b in a:
        shorter, longer = sorted((len(a), len(b)))
        return shorter / longer * 0.9
    a_words = _words(a)
    b_words = _words(b)
    common = len(a_words & b_words)
    union = len(a_words) + len(b_words) - common
    return common / union if union else 0.0


class SimilarityCache:
    """Thread-safe bounded cache; one instance is shared by every request path."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        threshold: float = DEFAULT_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.threshold = threshold
        self._clock = clock
        self._entries: list[CacheEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_live(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at < self.ttl_seconds

    def lookup(self, scope: str, request_text: str) -> str | None:
        scope_key = normalize_scope(scope)
        text = normalize_text(request_text)
        now = self._clock()
        with self._lock:
            candidates = [
                e for e in self._entries if e.scope == scope_key and self._is_live(e, now)
            ]
        best: CacheEntry | None = None
        best_score = 0.0
        for entry in candidates:
            score = similarity(entry.normalized_request_text, text)
            if score > best_score or (
                best is not None and score == best_score and entry.created_at > best.created_at
            ):
                best, best_score = entry, score
        if best is not None and best_score >= self.threshold:
            logger.info("Cache hit (scope=%s, score=%.2f)", scope_key, best_score)
            return best.content
        logger.debug("Cache miss (scope=%s, best_score=%.2f)", scope_key, best_score)
        return None

    def insert(self, scope: str, request_text: str, content: str) -> None:
        entry = CacheEntry(
            scope=normalize_scope(scope),
            normalized_request_text=normalize_text(request_text),
            content=content,
            created_at=self._clock(),
        )
        with self._lock:
            # Same key: replace, never mutate
            self._entries = [
                e
                for e in self._entries
                if not (
                    e.scope == entry.scope
                    and e.normalized_request_text == entry.normalized_request_text
                )
            ]
            if len(self._entries) >= self.capacity:
                oldest = min(self._entries, key=lambda e: e.created_at)
                self._entries.remove(oldest)
                logger.debug("Cache full, evicted entry from %s", oldest.scope)
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries = []

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            active = sum(1 for e in self._entries if self._is_live(e, now))
        return CacheStats(
            total_items=total,
            active_items=active,
            expired_items=total - active,
            max_size=self.capacity,
        )
