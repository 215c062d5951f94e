"""
ChartSage - Analysis Store

Persists analysis records and their one-time user feedback.
Backed by a Redis hash with graceful in-memory fallback. With Redis, feedback
is claimed with HSETNX so only one verdict lands even when several worker
processes share the store.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog

from chartsage.errors import AnalysisNotFoundError, FeedbackAlreadyRecordedError
from chartsage.models import AnalysisOutcome, AnalysisRecord

log = structlog.get_logger(__name__)

_ANALYSES_KEY = "chartsage:analyses"
# analysis id -> "1" / "0"; HSETNX makes the first verdict win across processes
_FEEDBACK_KEY = "chartsage:feedback"


class AnalysisStore:
    """Analysis records keyed by id."""

    def __init__(self, redis_url: Optional[str] = None):
        self._fallback: dict[str, AnalysisRecord] = {}
        self._lock = threading.Lock()
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
                log.info("analysis_store.redis_connected", url=redis_url)
            except Exception as exc:
                log.warning("analysis_store.redis_failed", error=str(exc))
                self._redis = None

    @property
    def available(self) -> bool:
        """True when records are persisted to Redis."""
        return self._redis is not None

    # ──────────────────────────────────────────────
    # Raw access
    # ──────────────────────────────────────────────

    def _put(self, record: AnalysisRecord) -> None:
        if self._redis is not None:
            try:
                self._redis.hset(_ANALYSES_KEY, record.id, record.model_dump_json())
                return
            except Exception as exc:
                log.warning("analysis_store.redis_error", op="put", error=str(exc))
        self._fallback[record.id] = record

    def _all(self) -> list[AnalysisRecord]:
        if self._redis is not None:
            try:
                raw = self._redis.hgetall(_ANALYSES_KEY)
                return [AnalysisRecord.model_validate_json(v) for v in raw.values()]
            except Exception as exc:
                log.warning("analysis_store.redis_error", op="all", error=str(exc))
        return list(self._fallback.values())

    def get(self, analysis_id: str) -> Optional[AnalysisRecord]:
        if self._redis is not None:
            try:
                raw = self._redis.hget(_ANALYSES_KEY, analysis_id)
                return AnalysisRecord.model_validate_json(raw) if raw else None
            except Exception as exc:
                log.warning("analysis_store.redis_error", op="get", error=str(exc))
        return self._fallback.get(analysis_id)

    def _claim_feedback(self, analysis_id: str, is_correct: bool) -> bool:
        """Reserve the single feedback slot for a record. False if already taken."""
        if self._redis is not None:
            try:
                return bool(self._redis.hsetnx(_FEEDBACK_KEY, analysis_id, "1" if is_correct else "0"))
            except Exception as exc:
                log.warning("analysis_store.redis_error", op="claim_feedback", error=str(exc))
        return True

    # ──────────────────────────────────────────────
    # Operations
    # ──────────────────────────────────────────────

    def save(self, outcome: AnalysisOutcome, image_url: str) -> AnalysisRecord:
        """Persist an outcome with a fresh id and timestamp."""
        details = outcome.trading_details
        record = AnalysisRecord(
            id=uuid.uuid4().hex[:12],
            image_url=image_url,
            pattern=outcome.pattern,
            prediction=outcome.prediction,
            confidence=outcome.confidence,
            win_rate=outcome.win_rate,
            sample_size=outcome.sample_size,
            explanation=outcome.explanation,
            timestamp=datetime.now(timezone.utc).isoformat(),
            feedback=None,
            source=outcome.source,
            trading_pair=details.pair if details else None,
            timeframe=details.timeframe if details else None,
        )
        self._put(record)
        log.info("analysis_store.saved", analysis_id=record.id, pattern=record.pattern)
        return record

    def require(self, analysis_id: str) -> AnalysisRecord:
        record = self.get(analysis_id)
        if record is None:
            raise AnalysisNotFoundError(analysis_id)
        return record

    def history(self, limit: Optional[int] = None) -> list[AnalysisRecord]:
        """All records, newest first."""
        # Reverse first so equal timestamps keep newest-first insertion order
        records = sorted(reversed(self._all()), key=lambda r: r.timestamp, reverse=True)
        return records[:limit] if limit else records

    def set_feedback(self, analysis_id: str, is_correct: bool) -> AnalysisRecord:
        """Record the user's verdict.

        Raises:
            AnalysisNotFoundError: unknown id.
            FeedbackAlreadyRecordedError: feedback was already given.
        """
        with self._lock:
            record = self.require(analysis_id)
            if record.feedback is not None or not self._claim_feedback(analysis_id, is_correct):
                raise FeedbackAlreadyRecordedError(analysis_id)
            updated = record.model_copy(update={"feedback": is_correct})
            self._put(updated)
        log.info("analysis_store.feedback_set", analysis_id=analysis_id, correct=is_correct)
        return updated

    def clear(self) -> None:
        self._fallback.clear()
        if self._redis is not None:
            try:
                self._redis.delete(_ANALYSES_KEY, _FEEDBACK_KEY)
            except Exception as exc:
                log.warning("analysis_store.redis_error", op="clear", error=str(exc))
