"""
ChartSage - Pattern Scorer Tests

Tests for:
- Weighted choice and selection weights
- Pattern selection (taxonomy, direction, confidence bounds)
- Statistics blending
- Feedback integration (incl. concurrent updates)
- Trading-pair profile updates (incl. concurrent updates)
"""

import random
import threading

import pytest

from chartsage.engines.learning_store import LearningStore
from chartsage.engines.scorer import (
    INITIAL_VOLATILITY,
    WEIGHT_FLOOR,
    PastOutcome,
    PatternScorer,
    weighted_choice,
)
from chartsage.engines.simulator import TRADING_PAIRS
from chartsage.engines.taxonomy import all_patterns, is_known_pattern
from chartsage.errors import InvalidInputError
from chartsage.models import PatternLearningState, Prediction, TradingPairProfile


def _seed_pattern(store, name, adjustment, feedback, success):
    store.put_pattern(name, PatternLearningState(
        confidence_adjustment=adjustment,
        feedback_count=feedback,
        success_count=success,
    ))


# ════════════════════════════════════════════════
#  WEIGHTED CHOICE
# ════════════════════════════════════════════════


class TestWeightedChoice:

    def test_single_item_at_top_of_range(self):
        assert weighted_choice(["Doji Formation"], [1.0], 0.999999) == "Doji Formation"

    def test_zero_draw_picks_first(self):
        assert weighted_choice(["a", "b", "c"], [1.0, 1.0, 1.0], 0.0) == "a"

    def test_cumulative_boundaries(self):
        items, weights = ["a", "b"], [1.0, 3.0]
        assert weighted_choice(items, weights, 0.25) == "a"
        assert weighted_choice(items, weights, 0.26) == "b"

    def test_uncovered_draw_returns_last(self):
        assert weighted_choice(["a", "b"], [1.0, 1.0], 1.5) == "b"

    def test_negative_weights_are_floored(self):
        # "a" is effectively excluded, never a negative total
        assert weighted_choice(["a", "b"], [-5.0, 1.0], 0.5) == "b"

    def test_all_negative_weights_still_choose(self):
        assert weighted_choice(["a", "b"], [-1.0, -2.0], 0.4) == "a"

    def test_empty_items_raise(self):
        with pytest.raises(ValueError):
            weighted_choice([], [], 0.5)


class TestPatternWeights:

    def test_fresh_store_weights_are_uniform(self, scorer):
        assert scorer.pattern_weights(["A", "B"], "BTC/USD") == [1.0, 1.0]

    def test_learning_pair_and_history_multiply(self, store, scorer):
        _seed_pattern(store, "A", adjustment=2, feedback=2, success=2)
        store.put_pair("BTC/USD", TradingPairProfile(patterns={"B": 5}))
        history = [PastOutcome("A", True), PastOutcome("A", True), PastOutcome("B", False)]

        weights = scorer.pattern_weights(["A", "B"], "btc/usd", history)

        # A: (1 + 2) * (0.5 + 1.0) * (1 + 2/10); B: 1 * (1 + 5/10)
        assert weights[0] == pytest.approx(5.4)
        assert weights[1] == pytest.approx(1.5)

    def test_heavily_penalized_pattern_floors(self, store, scorer):
        _seed_pattern(store, "A", adjustment=-10, feedback=10, success=0)
        assert scorer.pattern_weights(["A"], "BTC/USD") == [WEIGHT_FLOOR]


# ════════════════════════════════════════════════
#  PATTERN SELECTION
# ════════════════════════════════════════════════


class TestSelectPattern:

    def test_always_in_taxonomy_and_bounds(self, store):
        scorer = PatternScorer(store, rng=random.Random(42))
        driver = random.Random(7)
        for name in all_patterns()[::3]:
            _seed_pattern(store, name, adjustment=10, feedback=10, success=10)
        for name in all_patterns()[1::3]:
            _seed_pattern(store, name, adjustment=-10, feedback=10, success=0)

        for _ in range(500):
            pair = driver.choice(TRADING_PAIRS)
            price = driver.choice([None, 0.0, driver.uniform(0.1, 70000)])
            pick = scorer.select_pattern(pair, price)
            assert is_known_pattern(pick.pattern)
            assert 50 <= pick.confidence <= 95
            if price:
                scorer.update_pair_profile(pair, price, pick.pattern)

    def test_direction_follows_price_move(self, store, scorer):
        scorer.update_pair_profile("ETH/USD", 3000.0, "Doji Formation")
        assert scorer.select_pattern("ETH/USD", 3100.0).prediction == Prediction.BULLISH
        assert scorer.select_pattern("ETH/USD", 2900.0).prediction == Prediction.BEARISH

    def test_positive_learning_raises_confidence(self, store):
        for name in all_patterns():
            _seed_pattern(store, name, adjustment=10, feedback=10, success=10)
        scorer = PatternScorer(store, rng=random.Random(3))
        for _ in range(100):
            assert scorer.select_pattern("NEW/PAIR").confidence >= 80

    def test_negative_learning_lowers_confidence(self, store):
        for name in all_patterns():
            _seed_pattern(store, name, adjustment=-10, feedback=10, success=0)
        scorer = PatternScorer(store, rng=random.Random(3))
        for _ in range(100):
            confidence = scorer.select_pattern("NEW/PAIR").confidence
            assert 50 <= confidence <= 69

    def test_seeded_selection_is_reproducible(self, store):
        a = PatternScorer(store, rng=random.Random(99)).select_pattern("BTC/USD", 61000.0)
        b = PatternScorer(store, rng=random.Random(99)).select_pattern("BTC/USD", 61000.0)
        assert a == b


# ════════════════════════════════════════════════
#  STATISTICS
# ════════════════════════════════════════════════


class TestComputeStatistics:

    def test_bounds_over_random_histories(self, store):
        scorer = PatternScorer(store, rng=random.Random(11))
        driver = random.Random(5)
        patterns = all_patterns()
        for trial in range(1000):
            pattern = driver.choice(patterns)
            if trial % 4 == 0:
                feedback = driver.randint(1, 40)
                _seed_pattern(store, pattern, 0, feedback, driver.randint(0, feedback))
            history = [
                PastOutcome(driver.choice(patterns[:4]), driver.choice([True, False, None]))
                for _ in range(driver.randint(0, 40))
            ]
            stats = scorer.compute_statistics(pattern, history)
            assert 50 <= stats.win_rate <= 90
            assert stats.sample_size >= 150

    def test_empty_history_baseline_ranges(self, scorer):
        for _ in range(200):
            stats = scorer.compute_statistics("Doji Formation")
            assert 65 <= stats.win_rate <= 84
            assert 150 <= stats.sample_size <= 499

    def test_perfect_learning_clamps_to_ceiling(self, store, scorer):
        _seed_pattern(store, "Hammer Candlestick", 10, 10, 10)
        stats = scorer.compute_statistics("Hammer Candlestick")
        assert stats.win_rate == 90
        assert stats.sample_size >= 160

    def test_failed_history_clamps_to_floor(self, scorer):
        history = [PastOutcome("RSI Divergence", False)] * 20
        stats = scorer.compute_statistics("RSI Divergence", history)
        assert stats.win_rate == 50
        assert stats.sample_size >= 170

    def test_same_seed_same_result(self, store):
        _seed_pattern(store, "MACD Divergence", 3, 6, 4)
        history = [PastOutcome("MACD Divergence", True), PastOutcome("MACD Divergence", None)]
        first = PatternScorer(store, rng=random.Random(21)).compute_statistics("MACD Divergence", history)
        second = PatternScorer(store, rng=random.Random(21)).compute_statistics("MACD Divergence", history)
        assert first == second


# ════════════════════════════════════════════════
#  FEEDBACK
# ════════════════════════════════════════════════


class TestRecordFeedback:

    @pytest.mark.parametrize("n", [1, 4, 10, 11, 25])
    def test_consecutive_correct(self, scorer, n):
        for _ in range(n):
            state = scorer.record_feedback("Doji Formation", True)
        assert state.feedback_count == n
        assert state.success_count == n
        assert state.confidence_adjustment == min(n, 10)

    @pytest.mark.parametrize("n", [1, 4, 10, 11, 25])
    def test_consecutive_incorrect(self, scorer, n):
        for _ in range(n):
            state = scorer.record_feedback("Evening Star Pattern", False)
        assert state.feedback_count == n
        assert state.success_count == 0
        assert state.confidence_adjustment == max(-n, -10)

    def test_mixed_scenario(self, store, scorer):
        for _ in range(5):
            scorer.record_feedback("Hammer Candlestick", True)
        scorer.record_feedback("Hammer Candlestick", False)

        state = store.get_pattern("Hammer Candlestick")
        assert state.feedback_count == 6
        assert state.success_count == 5
        assert state.confidence_adjustment == 4
        assert state.success_rate == pytest.approx(5 / 6)

    def test_name_is_stripped(self, store, scorer):
        scorer.record_feedback("  Doji Formation ", True)
        assert store.get_pattern("Doji Formation").feedback_count == 1

    def test_unknown_pattern_names_are_learned(self, store, scorer):
        scorer.record_feedback("Cup and Handle", True)
        assert store.get_pattern("Cup and Handle").success_count == 1

    @pytest.mark.parametrize("bad", ["", "   ", None, 42, "x" * 121, "bad\x00name"])
    def test_invalid_names_rejected(self, scorer, bad):
        with pytest.raises(InvalidInputError):
            scorer.record_feedback(bad, True)

    def test_non_bool_verdict_rejected(self, scorer):
        with pytest.raises(InvalidInputError):
            scorer.record_feedback("Doji Formation", 1)

    def test_returned_state_is_a_snapshot(self, store, scorer):
        state = scorer.record_feedback("Doji Formation", True)
        state.feedback_count = 99
        assert store.get_pattern("Doji Formation").feedback_count == 1

    def test_concurrent_feedback_loses_no_updates(self, store, scorer):
        threads_n, per_thread = 8, 50

        def worker(correct):
            for _ in range(per_thread):
                scorer.record_feedback("Inside Bar Pattern", correct)

        threads = [threading.Thread(target=worker, args=(i % 2 == 0,)) for i in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = store.get_pattern("Inside Bar Pattern")
        assert state.feedback_count == threads_n * per_thread
        assert state.success_count == threads_n * per_thread // 2
        assert -10 <= state.confidence_adjustment <= 10


# ════════════════════════════════════════════════
#  PAIR PROFILES
# ════════════════════════════════════════════════


class TestUpdatePairProfile:

    def test_first_then_second_observation(self, scorer):
        first = scorer.update_pair_profile("BTC/USD", 61000, "Bollinger Band Squeeze")
        assert first.last_seen_price == 61000
        assert first.volatility == INITIAL_VOLATILITY
        assert first.patterns == {"Bollinger Band Squeeze": 1}

        second = scorer.update_pair_profile("BTC/USD", 62200, "Bollinger Band Squeeze")
        assert second.volatility == pytest.approx(0.02 * 0.7 + (62200 / 61000 - 1) * 0.3)
        assert second.volatility == pytest.approx(0.0199, abs=1e-4)
        assert second.last_seen_price == 62200
        assert second.patterns["Bollinger Band Squeeze"] == 2
        assert second.first_seen_date == first.first_seen_date

    def test_symbol_is_normalized(self, store, scorer):
        scorer.update_pair_profile(" btc/usd ", 61000, "Doji Formation")
        assert store.get_pair("BTC/USD") is not None

    def test_missing_price_keeps_price_and_volatility(self, scorer):
        scorer.update_pair_profile("EUR/USD", 1.1, "Doji Formation")
        profile = scorer.update_pair_profile("EUR/USD", None, "Hammer Candlestick")
        assert profile.last_seen_price == 1.1
        assert profile.volatility == INITIAL_VOLATILITY
        assert profile.patterns == {"Doji Formation": 1, "Hammer Candlestick": 1}

    def test_zero_last_price_skips_volatility(self, scorer):
        scorer.update_pair_profile("SOL/USD", 0, "Doji Formation")
        profile = scorer.update_pair_profile("SOL/USD", 120.0, "Doji Formation")
        assert profile.volatility == INITIAL_VOLATILITY
        assert profile.last_seen_price == 120.0

    @pytest.mark.parametrize("bad", ["", "B", "BTC-USD", "BTC/USD/EUR"])
    def test_invalid_symbol_rejected(self, scorer, bad):
        with pytest.raises(InvalidInputError):
            scorer.update_pair_profile(bad, 1.0, "Doji Formation")

    def test_stores_are_isolated(self):
        a, b = LearningStore(), LearningStore()
        PatternScorer(a).update_pair_profile("BTC/USD", 61000, "Doji Formation")
        assert b.get_pair("BTC/USD") is None

    def test_concurrent_updates_lose_no_occurrences(self, store, scorer):
        threads_n, per_thread = 8, 50
        prices = (61000.0, 61500.0)

        def worker(offset):
            for i in range(per_thread):
                scorer.update_pair_profile("BTC/USD", prices[(i + offset) % 2], "Doji Formation")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        profile = store.get_pair("BTC/USD")
        assert profile.patterns == {"Doji Formation": threads_n * per_thread}
        assert profile.last_seen_price in prices
        assert 0 <= profile.volatility <= INITIAL_VOLATILITY
