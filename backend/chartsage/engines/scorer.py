"""
ChartSage - Pattern Confidence Scorer

Feedback-weighted pattern selection and confidence scoring.

Four operations share one ``LearningStore``:

- ``select_pattern``      - weighted-random pattern + direction + confidence
- ``compute_statistics``  - display win rate / sample size blended with learning
- ``record_feedback``     - nudge a pattern's learning state (+1 right, -1 wrong)
- ``update_pair_profile`` - track price, volatility and pattern counts per pair

The selector and statistics are read-only. Feedback and profile updates
serialize on the store's per-key locks. All randomness comes from the
injected ``random.Random`` so tests can seed it.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

import structlog

from chartsage.engines.learning_store import LearningStore
from chartsage.engines.taxonomy import CATEGORIES, patterns_in
from chartsage.errors import InvalidInputError
from chartsage.models import (
    PatternLearningState,
    PatternSelection,
    PatternStatistics,
    Prediction,
    TradingPairProfile,
    utcnow,
)
from chartsage.utils.validators import (
    normalize_pair_symbol,
    validate_pair_symbol,
    validate_pattern_name,
)

log = structlog.get_logger(__name__)

# Bounds
CONFIDENCE_MIN, CONFIDENCE_MAX = 50, 95
WIN_RATE_MIN, WIN_RATE_MAX = 50, 90
ADJUSTMENT_LIMIT = 10
WEIGHT_FLOOR = 1e-6

# Pair profile seeds
INITIAL_VOLATILITY = 0.02
VOLATILITY_DECAY = 0.7
VOLATILITY_WEIGHT = 0.3


class HistoricalOutcome(Protocol):
    """Anything carrying a pattern name and a feedback verdict."""
    pattern: str
    feedback: Optional[bool]


@dataclass(frozen=True)
class PastOutcome:
    """Minimal ``HistoricalOutcome`` for callers without stored records."""
    pattern: str
    feedback: Optional[bool] = None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def weighted_choice(items: Sequence[str], weights: Sequence[float], draw: float) -> str:
    """Pick from *items* by cumulative weight.

    Weights are floored at ``WEIGHT_FLOOR`` and normalized. Returns the first
    item whose cumulative weight meets or exceeds *draw* (a value in [0, 1)).
    If rounding leaves the draw above the final cumulative sum, the last item
    is returned.
    """
    if not items:
        raise ValueError("weighted_choice needs at least one item")
    if len(items) != len(weights):
        raise ValueError("items and weights must have the same length")

    floored = [max(w, WEIGHT_FLOOR) if math.isfinite(w) else WEIGHT_FLOOR for w in weights]
    total = sum(floored)

    cumulative = 0.0
    for item, weight in zip(items, floored):
        cumulative += weight / total
        if draw <= cumulative:
            return item
    return items[-1]


class PatternScorer:
    """Selects patterns and scores confidence using accumulated feedback.

    Usage::

        scorer = PatternScorer(LearningStore())
        pick = scorer.select_pattern("BTC/USD", 61000.0, history)
        stats = scorer.compute_statistics(pick.pattern, history)
        scorer.update_pair_profile("BTC/USD", 61000.0, pick.pattern)
        scorer.record_feedback(pick.pattern, is_correct=True)
    """

    def __init__(self, store: LearningStore, rng: Optional[random.Random] = None):
        self.store = store
        self._rng = rng or random.Random()

    @property
    def rng(self) -> random.Random:
        return self._rng

    # ──────────────────────────────────────────────
    # Pattern Selector
    # ──────────────────────────────────────────────

    def pattern_weights(
        self,
        patterns: Sequence[str],
        pair_symbol: str,
        history: Iterable[HistoricalOutcome] = (),
    ) -> list[float]:
        """Unnormalized selection weight for each pattern."""
        profile = self.store.get_pair(normalize_pair_symbol(pair_symbol))
        confirmed: dict[str, int] = {}
        for item in history:
            if item.feedback is True:
                confirmed[item.pattern] = confirmed.get(item.pattern, 0) + 1

        weights = []
        for pattern in patterns:
            weight = 1.0

            state = self.store.get_pattern(pattern)
            if state is not None:
                weight += state.confidence_adjustment
                if state.feedback_count > 0:
                    weight *= 0.5 + state.success_rate

            if profile is not None and profile.patterns.get(pattern):
                weight *= 1 + profile.patterns[pattern] / 10

            weight *= 1 + confirmed.get(pattern, 0) / 10

            weights.append(max(weight, WEIGHT_FLOOR))
        return weights

    def select_pattern(
        self,
        pair_symbol: str,
        current_price: Optional[float] = None,
        history: Iterable[HistoricalOutcome] = (),
    ) -> PatternSelection:
        """Choose a pattern, a direction and a confidence score."""
        history = list(history)
        category = self._rng.choice(CATEGORIES)
        candidates = patterns_in(category)

        weights = self.pattern_weights(candidates, pair_symbol, history)
        pattern = weighted_choice(candidates, weights, self._rng.random())

        confidence = float(self._rng.randrange(60, 90))
        price = current_price if current_price and current_price > 0 else None
        profile = self.store.get_pair(normalize_pair_symbol(pair_symbol))

        if profile is not None:
            if profile.last_seen_price and price is not None:
                prediction = Prediction.BULLISH if price > profile.last_seen_price else Prediction.BEARISH
                change = abs(price / profile.last_seen_price - 1)
                confidence += min(change * 100, 10)
            else:
                prediction = self._random_direction()
            # Higher volatility means lower confidence
            confidence -= min(profile.volatility * 10, 15)
        else:
            prediction = self._random_direction()

        state = self.store.get_pattern(pattern)
        if state is not None:
            confidence += state.confidence_adjustment
            if state.feedback_count > 0:
                confidence += (state.success_rate - 0.5) * 20

        final = _round_half_up(_clamp(confidence, CONFIDENCE_MIN, CONFIDENCE_MAX))
        log.debug(
            "scorer.pattern_selected",
            pair=pair_symbol,
            category=category,
            pattern=pattern,
            prediction=prediction.value,
            confidence=final,
        )
        return PatternSelection(pattern=pattern, prediction=prediction, confidence=final)

    def _random_direction(self) -> Prediction:
        return Prediction.BULLISH if self._rng.random() > 0.5 else Prediction.BEARISH

    # ──────────────────────────────────────────────
    # Statistics Blender
    # ──────────────────────────────────────────────

    def compute_statistics(
        self,
        pattern: str,
        history: Iterable[HistoricalOutcome] = (),
    ) -> PatternStatistics:
        """Blend a randomized baseline win rate with learned and historical rates."""
        win_rate: float = 65 + self._rng.randrange(20)
        sample_size = 150 + self._rng.randrange(350)

        state = self.store.get_pattern(pattern)
        if state is not None and state.feedback_count > 0:
            learned_rate = state.success_count / state.feedback_count * 100
            blend = min(state.feedback_count / 10, 0.8)
            win_rate = _round_half_up(win_rate * (1 - blend) + learned_rate * blend)
            sample_size += state.feedback_count

        matching = [item for item in history if item.pattern == pattern]
        if matching:
            correct = sum(1 for item in matching if item.feedback is True)
            history_rate = correct / len(matching) * 100
            blend = min(len(matching) / 20, 0.6)
            win_rate = _round_half_up(win_rate * (1 - blend) + history_rate * blend)
            sample_size += len(matching)

        return PatternStatistics(
            win_rate=int(_clamp(win_rate, WIN_RATE_MIN, WIN_RATE_MAX)),
            sample_size=sample_size,
        )

    # ──────────────────────────────────────────────
    # Feedback Integrator
    # ──────────────────────────────────────────────

    def record_feedback(self, pattern: str, is_correct: bool) -> PatternLearningState:
        """Apply one right/wrong verdict to a pattern's learning state.

        Returns a snapshot of the updated state.

        Raises:
            InvalidInputError: empty or malformed pattern name.
        """
        name = validate_pattern_name(pattern)
        if not isinstance(is_correct, bool):
            raise InvalidInputError("is_correct must be a boolean")

        with self.store.locked_pattern(name):
            state = self.store.get_pattern(name) or PatternLearningState()
            state.feedback_count += 1
            if is_correct:
                state.success_count += 1
                state.confidence_adjustment += 1
            else:
                state.confidence_adjustment -= 1
            state.confidence_adjustment = int(
                _clamp(state.confidence_adjustment, -ADJUSTMENT_LIMIT, ADJUSTMENT_LIMIT)
            )
            state.last_updated = utcnow()
            self.store.put_pattern(name, state)

        log.info(
            "scorer.feedback_recorded",
            pattern=name,
            correct=is_correct,
            feedback_count=state.feedback_count,
            adjustment=state.confidence_adjustment,
        )
        return state.model_copy(deep=True)

    # ──────────────────────────────────────────────
    # Trading-Pair Profile Updater
    # ──────────────────────────────────────────────

    def update_pair_profile(
        self,
        pair_symbol: str,
        current_price: Optional[float],
        pattern: str,
    ) -> TradingPairProfile:
        """Record an observed price and pattern occurrence for a pair."""
        symbol = validate_pair_symbol(pair_symbol)
        name = validate_pattern_name(pattern)
        price = current_price if current_price and current_price > 0 else None
        now = utcnow()

        with self.store.locked_pair(symbol):
            profile = self.store.get_pair(symbol)
            if profile is None:
                profile = TradingPairProfile(
                    patterns={name: 1},
                    volatility=INITIAL_VOLATILITY,
                    last_seen_price=price or 0.0,
                    first_seen_date=now,
                    last_updated=now,
                )
            else:
                if price is not None:
                    if profile.last_seen_price:
                        change = abs(price / profile.last_seen_price - 1)
                        profile.volatility = (
                            profile.volatility * VOLATILITY_DECAY + change * VOLATILITY_WEIGHT
                        )
                    profile.last_seen_price = price
                profile.patterns[name] = profile.patterns.get(name, 0) + 1
                profile.last_updated = now
            self.store.put_pair(symbol, profile)

        log.debug(
            "scorer.pair_profile_updated",
            pair=symbol,
            pattern=name,
            volatility=round(profile.volatility, 5),
            last_price=profile.last_seen_price,
        )
        return profile.model_copy(deep=True)
