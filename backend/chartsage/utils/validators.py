"""
ChartSage - Input Validators

Reusable validation helpers for pattern names, trading-pair symbols, chart
image payloads. Raise InvalidInputError (a ValueError) on
invalid input so callers can map to 400 responses.
"""

from __future__ import annotations

import re
from typing import Optional

from chartsage.errors import InvalidInputError

MAX_PATTERN_NAME_LENGTH = 120

# BTC/USD, EURUSD, XAU/USD, 1000PEPE/USDT
_PAIR_RE = re.compile(r"^[A-Z0-9]{2,12}(/[A-Z0-9]{2,12})?$")

_DATA_URL_RE = re.compile(r"^data:image/(png|jpe?g|webp|gif);base64,[A-Za-z0-9+/=\s]+$")


def validate_pattern_name(raw: object) -> str:
    """Clean and validate a chart pattern name.

    >>> validate_pattern_name('  Doji Formation ')
    'Doji Formation'
    """
    if not isinstance(raw, str):
        raise InvalidInputError(f"Pattern name must be a string, got {type(raw).__name__}")
    name = raw.strip()
    if not name:
        raise InvalidInputError("Pattern name cannot be empty")
    if len(name) > MAX_PATTERN_NAME_LENGTH:
        raise InvalidInputError(
            f"Pattern name exceeds {MAX_PATTERN_NAME_LENGTH} characters"
        )
    if any(not ch.isprintable() for ch in name):
        raise InvalidInputError("Pattern name contains control characters")
    return name


def normalize_pair_symbol(raw: Optional[str]) -> str:
    """Uppercase and strip a pair symbol without validating it."""
    return (raw or "").strip().upper()


def validate_pair_symbol(raw: Optional[str]) -> str:
    """Clean and validate a trading-pair symbol.

    >>> validate_pair_symbol('btc/usd')
    'BTC/USD'
    """
    symbol = normalize_pair_symbol(raw)
    if not symbol:
        raise InvalidInputError("Trading pair cannot be empty")
    if not _PAIR_RE.match(symbol):
        raise InvalidInputError(
            f"Invalid trading pair '{symbol}'. Expected e.g. BTC/USD or EURUSD"
        )
    return symbol


def validate_image_data_url(raw: str) -> str:
    """Accept a base64 image data URL, or bare base64 which is assumed PNG."""
    image = raw.strip()
    if not image:
        raise InvalidInputError("Image cannot be empty")
    if not image.startswith("data:"):
        image = f"data:image/png;base64,{image}"
    if not _DATA_URL_RE.match(image):
        raise InvalidInputError("Image must be a base64 data URL (data:image/...;base64,...)")
    return image

