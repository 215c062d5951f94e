"""
ChartSage - Learning Store

Holds the two shared tables the scorer works against:

1. **Pattern learning** - one ``PatternLearningState`` per pattern name.
2. **Pair profiles** - one ``TradingPairProfile`` per trading-pair symbol.

Entries are copy-on-write: readers always get a private copy, writers
mutate their copy under the entry's lock and ``put`` it back. Redis is
optional. When reachable, every ``put`` is written through to a hash and
the tables are reloaded on startup; otherwise the store lives in-process.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from chartsage.models import PatternLearningState, TradingPairProfile

log = structlog.get_logger(__name__)

_PATTERNS_KEY = "chartsage:learning:patterns"
_PAIRS_KEY = "chartsage:learning:pairs"


class LearningStore:
    """Process-wide learning and pair-profile tables with per-key locking."""

    def __init__(self, redis_url: Optional[str] = None):
        self._patterns: dict[str, PatternLearningState] = {}
        self._pairs: dict[str, TradingPairProfile] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._redis = None

        if redis_url:
            try:
                import redis
                self._redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=2,
                    socket_connect_timeout=2,
                )
                self._redis.ping()
                self._load()
                log.info("learning_store.redis_connected", url=redis_url)
            except Exception as exc:
                log.warning("learning_store.redis_failed", error=str(exc))
                self._redis = None

        if self._redis is None:
            log.info("learning_store.using_memory")

    @property
    def persistent(self) -> bool:
        return self._redis is not None

    # ──────────────────────────────────────────────
    # Locking
    # ──────────────────────────────────────────────

    def _lock_for(self, table: str, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get((table, key))
            if lock is None:
                lock = self._locks[(table, key)] = threading.Lock()
            return lock

    @contextmanager
    def locked_pattern(self, name: str) -> Iterator[None]:
        """Serialize read-modify-write of one pattern's learning state."""
        with self._lock_for("pattern", name):
            yield

    @contextmanager
    def locked_pair(self, symbol: str) -> Iterator[None]:
        """Serialize read-modify-write of one pair's profile."""
        with self._lock_for("pair", symbol):
            yield

    # ──────────────────────────────────────────────
    # Pattern learning
    # ──────────────────────────────────────────────

    def get_pattern(self, name: str) -> Optional[PatternLearningState]:
        state = self._patterns.get(name)
        return state.model_copy(deep=True) if state is not None else None

    def put_pattern(self, name: str, state: PatternLearningState) -> None:
        self._patterns[name] = state
        self._write(_PATTERNS_KEY, name, state.model_dump_json())

    def pattern_items(self) -> list[tuple[str, PatternLearningState]]:
        return [(name, s.model_copy(deep=True)) for name, s in list(self._patterns.items())]

    # ──────────────────────────────────────────────
    # Pair profiles
    # ──────────────────────────────────────────────

    def get_pair(self, symbol: str) -> Optional[TradingPairProfile]:
        profile = self._pairs.get(symbol)
        return profile.model_copy(deep=True) if profile is not None else None

    def put_pair(self, symbol: str, profile: TradingPairProfile) -> None:
        self._pairs[symbol] = profile
        self._write(_PAIRS_KEY, symbol, profile.model_dump_json())

    def pair_items(self) -> list[tuple[str, TradingPairProfile]]:
        return [(symbol, p.model_copy(deep=True)) for symbol, p in list(self._pairs.items())]

    # ──────────────────────────────────────────────
    # Persistence
    # ──────────────────────────────────────────────

    def _write(self, key: str, field: str, payload: str) -> None:
        if self._redis is None:
            return
        try:
            self._redis.hset(key, field, payload)
        except Exception as exc:
            log.warning("learning_store.redis_write_failed", key=key, field=field, error=str(exc))

    def _load(self) -> None:
        for name, raw in self._redis.hgetall(_PATTERNS_KEY).items():
            self._patterns[name] = PatternLearningState.model_validate_json(raw)
        for symbol, raw in self._redis.hgetall(_PAIRS_KEY).items():
            self._pairs[symbol] = TradingPairProfile.model_validate_json(raw)
        log.info(
            "learning_store.loaded",
            patterns=len(self._patterns),
            pairs=len(self._pairs),
        )

    def clear(self) -> None:
        """Drop all learning state (tests and admin resets)."""
        self._patterns.clear()
        self._pairs.clear()
        if self._redis is not None:
            try:
                self._redis.delete(_PATTERNS_KEY, _PAIRS_KEY)
            except Exception as exc:
                log.warning("learning_store.redis_clear_failed", error=str(exc))
