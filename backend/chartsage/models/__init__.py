"""
ChartSage - Pydantic Models

All I/O schemas for the application. Engines return these, the analysis
store persists these, API routes serialize these.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    """Base for models that cross the HTTP boundary with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class Prediction(str, Enum):
    """Direction of the next candle."""
    BULLISH = "bullish"
    BEARISH = "bearish"


class AnalysisSource(str, Enum):
    """Which stage of the analyzer produced a result."""
    VISION = "vision"
    SIMULATED = "simulated"


# ──────────────────────────────────────────────
# Learning State
# ──────────────────────────────────────────────

class PatternLearningState(ApiModel):
    """Feedback-derived learning for one pattern name."""
    confidence_adjustment: int = Field(0, ge=-10, le=10)
    feedback_count: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def success_rate(self) -> Optional[float]:
        if self.feedback_count <= 0:
            return None
        return self.success_count / self.feedback_count


class TradingPairProfile(ApiModel):
    """Observed price and pattern-frequency statistics for one symbol."""
    patterns: dict[str, int] = Field(default_factory=dict)
    volatility: float = 0.02
    last_seen_price: float = 0.0
    first_seen_date: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────
# Scorer I/O
# ──────────────────────────────────────────────

class PatternSelection(BaseModel):
    """Output of the pattern selector."""
    pattern: str
    prediction: Prediction
    confidence: int = Field(..., ge=50, le=95)


class PatternStatistics(BaseModel):
    """Display win rate and sample size for a pattern."""
    win_rate: int = Field(..., ge=50, le=90)
    sample_size: int = Field(..., ge=150)


class TradingDetails(ApiModel):
    """Trading metadata read from (or simulated for) a chart image."""
    pair: str
    entry: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    volume: Optional[str] = None
    timeframe: Optional[str] = None
    indicators: list[str] = Field(default_factory=list)


class AnalysisOutcome(ApiModel):
    """Result of a single chart analysis, before persistence."""
    pattern: str
    prediction: Prediction
    confidence: int
    win_rate: int
    sample_size: int
    explanation: str
    source: AnalysisSource = AnalysisSource.SIMULATED
    trading_details: Optional[TradingDetails] = None


# ──────────────────────────────────────────────
# Persistence / API
# ──────────────────────────────────────────────

class AnalysisRecord(ApiModel):
    """A stored analysis. Feedback starts as None and is set exactly once."""
    id: str
    image_url: str
    pattern: str
    prediction: Prediction
    confidence: int
    win_rate: int
    sample_size: int
    explanation: str
    timestamp: str
    feedback: Optional[bool] = None
    source: AnalysisSource = AnalysisSource.SIMULATED
    trading_pair: Optional[str] = None
    timeframe: Optional[str] = None


# ──────────────────────────────────────────────
# Learning Statistics
# ──────────────────────────────────────────────

class PatternAccuracy(ApiModel):
    pattern: str
    accuracy: float
    samples: int


class LearningSummary(ApiModel):
    """Overall learning progress across all stored analyses."""
    total_analyses: int = 0
    feedback_count: int = 0
    overall_accuracy: float = 0.0
    patterns_learned: int = 0
    top_patterns: list[PatternAccuracy] = Field(default_factory=list)
    learning_status: str = "initializing"
    vision_available: bool = False


class PatternOccurrence(ApiModel):
    pattern: str
    occurrences: int


class PairStatistics(ApiModel):
    """Per-pair view: frequent patterns, volatility band and feedback accuracy."""
    top_patterns: list[PatternOccurrence] = Field(default_factory=list)
    average_accuracy: Optional[float] = None
    volatility: str
    volatility_value: float
    last_seen_price: float
    analyses_with_feedback: int = 0
    first_seen: datetime
    last_updated: datetime


class AnalyzeRequest(ApiModel):
    """Chart image submitted for analysis, as a data URL."""
    image: str = Field(..., min_length=16, description="data:image/...;base64,... payload")


class FeedbackRequest(ApiModel):
    """User verdict on a previous analysis."""
    analysis_id: str = Field(..., min_length=1)
    is_correct: bool


class HealthCheck(BaseModel):
    """API health check response."""
    status: str = "ok"
    version: str = "1.0.0"
    services: dict[str, dict] = Field(default_factory=dict)
    uptime_seconds: float = 0.0
