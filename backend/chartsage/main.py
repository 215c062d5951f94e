"""
ChartSage - FastAPI Application Entry Point

Wires the learning store, scorer, vision engine, analyzer and analysis
store onto ``app.state`` and mounts all routes.
"""

import os
import random
import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chartsage.config import Settings, get_settings
from chartsage.db.analysis_store import AnalysisStore
from chartsage.engines.analyzer import ChartAnalyzer
from chartsage.engines.learning_store import LearningStore
from chartsage.engines.scorer import PatternScorer
from chartsage.engines.vision_engine import VisionEngine
from chartsage.routes import api_router, health_router

log = structlog.get_logger("chartsage.startup")

API_V1 = "/v1/api"


def _worker_count() -> int:
    raw = os.environ.get("WEB_CONCURRENCY") or os.environ.get("UVICORN_WORKERS") or "1"
    try:
        return int(raw)
    except ValueError:
        return 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    settings = app.state.settings
    log.info(
        "startup",
        env=settings.app_env,
        redis=settings.redis_url or "disabled",
        learning_persistent=app.state.learning_store.persistent,
        analyses_persistent=app.state.analysis_store.available,
        vision_model=settings.vision_model,
    )
    if not settings.vision_enabled:
        log.warning(
            "config.missing_key",
            key="google_api_key",
            impact="Gemini vision disabled, every analysis is simulated",
        )

    workers = _worker_count()
    if workers > 1:
        log.warning(
            "multi_worker.unsupported",
            workers=workers,
            redis=app.state.learning_store.persistent,
            detail=(
                "Learning tables are guarded by in-process locks. "
                "Run a single worker so feedback and pair updates are not lost."
            ),
        )
    yield
    log.info("shutdown")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()
    redis_url = settings.redis_url or None

    app = FastAPI(
        title="ChartSage",
        description="""# ChartSage API

Trading-chart pattern recognition that learns from user feedback.

- **Analyze**: upload a chart screenshot, get a pattern, direction and confidence
- **Feedback**: mark an analysis right or wrong to tune future confidence
- **Statistics**: learning progress, per-pair profiles, pattern taxonomy
""",
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Health", "description": "Service health checks"},
            {"name": "Analysis", "description": "Chart analysis and history"},
            {"name": "Learning", "description": "Feedback and learning statistics"},
            {"name": "Metrics", "description": "Prometheus-compatible metrics exposition"},
        ],
    )

    # ── Services ──
    learning_store = LearningStore(redis_url=redis_url)
    scorer = PatternScorer(learning_store, rng=random.Random(settings.random_seed))
    vision = VisionEngine(settings=settings)
    app.state.settings = settings
    app.state.learning_store = learning_store
    app.state.analyzer = ChartAnalyzer(scorer, vision=vision, settings=settings)
    app.state.analysis_store = AnalysisStore(redis_url=redis_url)
    app.state.started_at = time.monotonic()

    # ── Global Error Handlers ──
    from chartsage.error_handlers import register_error_handlers
    register_error_handlers(app)

    # ── CORS ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Request Logging ──
    from chartsage.middleware import RequestLoggerMiddleware
    app.add_middleware(RequestLoggerMiddleware)

    # ── Metrics Collection (outermost → captures full lifecycle) ──
    from chartsage.metrics import MetricsMiddleware
    app.add_middleware(MetricsMiddleware)

    # ── GZip Response Compression ──
    from starlette.middleware.gzip import GZipMiddleware
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Routes (unversioned) ──
    app.include_router(health_router, tags=["Health"])

    from chartsage.metrics import metrics_router
    app.include_router(metrics_router, tags=["Metrics"])

    # ── Routes (v1 API) ──
    app.include_router(api_router, prefix=API_V1)

    @app.middleware("http")
    async def add_api_version_header(request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = "v1"
        return response

    return app


app = create_app()
