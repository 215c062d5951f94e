"""
ChartSage - Chart Pattern Taxonomy

Fixed set of chart patterns the simulator can report, grouped by category.
"""

from __future__ import annotations

from typing import Optional

MARKET_PATTERNS: dict[str, tuple[str, ...]] = {
    "continuation": (
        "Higher Highs & Higher Lows (Uptrend)",
        "Lower Highs & Lower Lows (Downtrend)",
        "Moving Average Alignment (Price above EMAs)",
        "Moving Average Alignment (Price below EMAs)",
        "Bollinger Band Squeeze",
    ),
    "reversal": (
        "Break of Structure (Failed Higher Highs)",
        "Break of Structure (Failed Lower Lows)",
        "RSI Divergence",
        "MACD Divergence",
        "Exhaustion Move (Overextension beyond Bollinger Bands)",
    ),
    "consolidation": (
        "Inside Bar Pattern",
        "Narrow Range Bars",
        "Ascending Triangle Formation",
        "Descending Triangle Formation",
        "Symmetrical Triangle Formation",
    ),
    "breakout": (
        "Range Breakout (Above Resistance)",
        "Range Breakout (Below Support)",
        "Moving Average Crossover (Bullish)",
        "Moving Average Crossover (Bearish)",
        "Volume Spike Breakout",
    ),
    "candlestick": (
        "Bullish Engulfing Pattern",
        "Bearish Engulfing Pattern",
        "Hammer Candlestick",
        "Inverted Hammer Candlestick",
        "Morning Star Pattern",
        "Evening Star Pattern",
        "Doji Formation",
    ),
}

CATEGORIES: tuple[str, ...] = tuple(MARKET_PATTERNS)

_CATEGORY_BY_PATTERN: dict[str, str] = {
    name: category
    for category, names in MARKET_PATTERNS.items()
    for name in names
}


def all_patterns() -> list[str]:
    """Every pattern name, in category order."""
    return list(_CATEGORY_BY_PATTERN)


def patterns_in(category: str) -> list[str]:
    """Pattern names in a category. Raises KeyError for unknown categories."""
    return list(MARKET_PATTERNS[category])


def category_of(pattern: str) -> Optional[str]:
    return _CATEGORY_BY_PATTERN.get(pattern)


def is_known_pattern(pattern: str) -> bool:
    return pattern in _CATEGORY_BY_PATTERN
