"""
ChartSage - Chart Simulator

Stands in for OCR / vision extraction when no vision model is available.
Produces plausible trading metadata (pair, entry, stop-loss, take-profit,
volume, timeframe, indicators) from a seeded random source. The image
itself is not inspected.
"""

from __future__ import annotations

import random

from chartsage.models import TradingDetails

TRADING_PAIRS: tuple[str, ...] = (
    "BTC/USD", "ETH/USD", "XRP/USD", "SOL/USD", "ADA/USD",
    "EUR/USD", "GBP/USD", "USD/JPY", "USD/CAD", "AUD/USD",
)

TIMEFRAMES: tuple[str, ...] = ("1m", "5m", "15m", "1H", "4H", "1D")

INDICATORS: tuple[str, ...] = ("RSI", "MACD", "Bollinger Bands", "Moving Averages", "Volume")

# (base, random span) per pair; the remaining majors trade around 1.0-1.2
_PRICE_BANDS: dict[str, tuple[float, float]] = {
    "BTC/USD": (60000.0, 5000.0),
    "ETH/USD": (3000.0, 500.0),
    "XRP/USD": (0.5, 0.2),
    "SOL/USD": (100.0, 30.0),
    "ADA/USD": (0.4, 0.1),
    "USD/JPY": (145.0, 10.0),
    "USD/CAD": (1.3, 0.1),
}


def round_price(price: float) -> float:
    """Round a price to a precision suited to its magnitude."""
    if price > 1000:
        return float(round(price))
    if price > 100:
        return round(price, 1)
    if price > 1:
        return round(price, 2)
    return round(price, 4)


def _base_price(pair: str, rng: random.Random) -> float:
    if pair in _PRICE_BANDS:
        base, span = _PRICE_BANDS[pair]
        return base + rng.random() * span
    return 1 + rng.random() * 0.2


def _volume(pair: str, rng: random.Random) -> str:
    if "BTC" in pair:
        return f"{rng.random() * 5 + 0.5:.2f}M"
    if "ETH" in pair:
        return f"{rng.random() * 10 + 2:.2f}M"
    return f"{rng.random() * 50 + 10:.2f}M"


def extract_trading_info(image: str, rng: random.Random) -> TradingDetails:
    """Simulated trading-detail extraction for a chart image."""
    pair = rng.choice(TRADING_PAIRS)
    entry = round_price(_base_price(pair, rng))

    volatility_factor = 0.01 + rng.random() * 0.02  # 1-3%
    digits = 2 if ("BTC" in pair or "ETH" in pair) else 4
    stop_loss = round(entry * (1 - volatility_factor), digits)
    take_profit = round(entry * (1 + volatility_factor * 1.5), digits)

    indicators = rng.sample(INDICATORS, k=rng.randint(1, 3))

    return TradingDetails(
        pair=pair,
        entry=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        volume=_volume(pair, rng),
        timeframe=rng.choice(TIMEFRAMES),
        indicators=indicators,
    )
