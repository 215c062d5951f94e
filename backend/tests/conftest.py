"""
Shared fixtures. Tests run offline: no Gemini key, no Redis.
"""

import os

os.environ["GOOGLE_API_KEY"] = ""
os.environ["REDIS_URL"] = ""
os.environ["SIMULATED_DELAY_SECONDS"] = "0"

import random

import pytest

from chartsage.engines.learning_store import LearningStore
from chartsage.engines.scorer import PatternScorer


@pytest.fixture
def store():
    return LearningStore()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def scorer(store, rng):
    return PatternScorer(store, rng=rng)
