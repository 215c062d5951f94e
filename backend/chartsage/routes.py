"""
ChartSage - API Routes

All HTTP endpoints. Thin layer: delegates to the analyzer, the scorer and
the analysis store held on ``app.state`` by the application factory.
"""

from __future__ import annotations

import time
from typing import Optional

import structlog
from fastapi import APIRouter, Query, Request

from chartsage import metrics
from chartsage.config import Settings
from chartsage.db.analysis_store import AnalysisStore
from chartsage.engines.analyzer import ChartAnalyzer
from chartsage.engines.learning_stats import learning_summary, pair_statistics
from chartsage.engines.taxonomy import MARKET_PATTERNS
from chartsage.models import (
    AnalysisRecord,
    AnalyzeRequest,
    FeedbackRequest,
    HealthCheck,
    LearningSummary,
    PairStatistics,
)
from chartsage.utils.validators import validate_image_data_url, validate_pattern_name

log = structlog.get_logger(__name__)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _analyzer(request: Request) -> ChartAnalyzer:
    return request.app.state.analyzer


def _analyses(request: Request) -> AnalysisStore:
    return request.app.state.analysis_store


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

health_router = APIRouter()


@health_router.get("/health", response_model=HealthCheck)
async def health_check(request: Request):
    """Application health with storage and vision model status."""
    settings = _settings(request)
    analyzer = _analyzer(request)
    services: dict[str, dict] = {}

    if not settings.redis_url:
        services["redis"] = {"status": "disabled"}
    elif _analyses(request).available and analyzer.scorer.store.persistent:
        services["redis"] = {"status": "ok"}
    else:
        services["redis"] = {"status": "unavailable"}

    if analyzer.vision_available:
        services["vision"] = {
            "status": "ok",
            "model": settings.vision_model,
            "circuit": analyzer.vision.breaker.state.name.lower(),
        }
    else:
        services["vision"] = {"status": "no_api_key"}

    overall = "degraded" if any(s["status"] == "unavailable" for s in services.values()) else "ok"

    return HealthCheck(
        status=overall,
        services=services,
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 1),
    )


# ──────────────────────────────────────────────
# Analysis
# ──────────────────────────────────────────────

api_router = APIRouter()


@api_router.post("/analyze", response_model=AnalysisRecord, tags=["Analysis"])
async def analyze_chart(body: AnalyzeRequest, request: Request):
    """Analyze a chart image and store the result."""
    image = validate_image_data_url(body.image)
    store = _analyses(request)

    outcome = await _analyzer(request).analyze(image, store.history())
    record = store.save(outcome, image)
    metrics.record_analysis(record.source.value)
    return record


@api_router.get("/history", response_model=list[AnalysisRecord], tags=["Analysis"])
async def get_history(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Max records, newest first"),
):
    """Stored analyses, newest first."""
    return _analyses(request).history(limit or _settings(request).history_limit)


@api_router.get("/analysis/{analysis_id}", response_model=AnalysisRecord, tags=["Analysis"])
async def get_analysis(analysis_id: str, request: Request):
    return _analyses(request).require(analysis_id)


@api_router.post("/feedback", response_model=AnalysisRecord, tags=["Learning"])
async def submit_feedback(body: FeedbackRequest, request: Request):
    """Record whether an analysis was right; feeds the pattern learner.

    404 for an unknown id, 409 when feedback was already given, 400 when
    the stored pattern name cannot be learned. Nothing is stored in that case.
    """
    store = _analyses(request)
    validate_pattern_name(store.require(body.analysis_id).pattern)
    record = store.set_feedback(body.analysis_id, body.is_correct)
    _analyzer(request).scorer.record_feedback(record.pattern, body.is_correct)
    metrics.record_feedback(body.is_correct)
    return record


# ──────────────────────────────────────────────
# Learning Statistics
# ──────────────────────────────────────────────

@api_router.get("/ai/stats", response_model=LearningSummary, tags=["Learning"])
async def get_ai_stats(request: Request):
    """Overall learning progress."""
    summary = learning_summary(_analyses(request).history())
    return summary.model_copy(update={"vision_available": _analyzer(request).vision_available})


@api_router.get("/pairs/stats", response_model=dict[str, PairStatistics], tags=["Learning"])
async def get_pair_stats(request: Request):
    """Per-pair pattern frequencies, volatility and accuracy."""
    store = _analyzer(request).scorer.store
    return pair_statistics(store, _analyses(request).history())


@api_router.get("/patterns", tags=["Learning"])
async def get_patterns(request: Request):
    """Pattern taxonomy plus the learned state of every pattern with feedback."""
    store = _analyzer(request).scorer.store
    learned = {}
    for name, state in store.pattern_items():
        entry = state.model_dump(mode="json", by_alias=True)
        entry["successRate"] = state.success_rate
        learned[name] = entry
    return {
        "categories": {category: list(names) for category, names in MARKET_PATTERNS.items()},
        "learning": learned,
    }
