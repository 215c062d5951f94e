"""
ChartSage - Learning Statistics

Dashboard summaries computed from stored analyses and the live learning
store:

- ``learning_summary`` - overall accuracy, learned patterns, learning status
- ``pair_statistics``  - per-pair top patterns, volatility label, accuracy
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional

import structlog

from chartsage.engines.learning_store import LearningStore
from chartsage.models import (
    AnalysisRecord,
    LearningSummary,
    PairStatistics,
    PatternAccuracy,
    PatternOccurrence,
)

log = structlog.get_logger(__name__)

# Feedback thresholds for the learning status label
INITIALIZING_BELOW = 5
LEARNING_BELOW = 20

TOP_PATTERNS = 5
MIN_PATTERN_SAMPLES = 2
TOP_PAIR_PATTERNS = 3

LOW_VOLATILITY_BELOW = 0.01
MEDIUM_VOLATILITY_BELOW = 0.03


def learning_status(feedback_count: int) -> str:
    if feedback_count < INITIALIZING_BELOW:
        return "initializing"
    if feedback_count < LEARNING_BELOW:
        return "learning"
    return "optimized"


def volatility_label(volatility: float) -> str:
    if volatility < LOW_VOLATILITY_BELOW:
        return "low"
    if volatility < MEDIUM_VOLATILITY_BELOW:
        return "medium"
    return "high"


def _accuracy(correct: int, total: int) -> float:
    return round(correct / total * 100, 1) if total else 0.0


def learning_summary(history: Iterable[AnalysisRecord]) -> LearningSummary:
    """Aggregate accuracy over every analysis that received feedback.

    Args:
        history: Stored analyses, any order.

    Returns:
        Totals, overall accuracy (percent, 1 decimal), the best patterns by
        accuracy and a learning status label.
    """
    records = list(history)
    rated = [r for r in records if r.feedback is not None]
    correct = sum(1 for r in rated if r.feedback)

    per_pattern: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for record in rated:
        counts = per_pattern[record.pattern]
        counts[1] += 1
        if record.feedback:
            counts[0] += 1

    ranked = sorted(
        (
            PatternAccuracy(pattern=pattern, accuracy=_accuracy(hits, total), samples=total)
            for pattern, (hits, total) in per_pattern.items()
            if total >= MIN_PATTERN_SAMPLES
        ),
        key=lambda p: (-p.accuracy, -p.samples, p.pattern),
    )

    summary = LearningSummary(
        total_analyses=len(records),
        feedback_count=len(rated),
        overall_accuracy=_accuracy(correct, len(rated)),
        patterns_learned=len({r.pattern for r in records}),
        top_patterns=ranked[:TOP_PATTERNS],
        learning_status=learning_status(len(rated)),
    )
    log.debug(
        "learning_stats.summary",
        analyses=summary.total_analyses,
        feedback=summary.feedback_count,
        status=summary.learning_status,
    )
    return summary


def pair_statistics(
    store: LearningStore,
    history: Iterable[AnalysisRecord],
) -> dict[str, PairStatistics]:
    """Per-pair view built from live profiles plus stored feedback, keyed by symbol."""
    by_pair: dict[str, list[AnalysisRecord]] = defaultdict(list)
    for record in history:
        if record.trading_pair and record.feedback is not None:
            by_pair[record.trading_pair.upper()].append(record)

    stats: dict[str, PairStatistics] = {}
    for symbol, profile in sorted(store.pair_items(), key=lambda item: item[0]):
        top = sorted(profile.patterns.items(), key=lambda kv: (-kv[1], kv[0]))
        rated = by_pair.get(symbol, [])
        average: Optional[float] = (
            _accuracy(sum(1 for r in rated if r.feedback), len(rated)) if rated else None
        )
        stats[symbol] = PairStatistics(
            top_patterns=[
                PatternOccurrence(pattern=name, occurrences=count)
                for name, count in top[:TOP_PAIR_PATTERNS]
            ],
            average_accuracy=average,
            volatility=volatility_label(profile.volatility),
            volatility_value=round(profile.volatility, 5),
            last_seen_price=profile.last_seen_price,
            analyses_with_feedback=len(rated),
            first_seen=profile.first_seen_date,
            last_updated=profile.last_updated,
        )
    return stats
