"""
ChartSage - Chart Analyzer

Two-stage analysis strategy:

1. Ask the vision model, bounded by ``vision_timeout_seconds``.
2. On any failure or timeout, log the reason and run the local simulator:
   extract trading details, select a pattern with the scorer, blend
   statistics, compose the explanation, update the pair profile.

An unavailable vision model never fails the request.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

import structlog

from chartsage.config import Settings, get_settings
from chartsage.engines.explanation import compose_explanation
from chartsage.engines.scorer import (
    CONFIDENCE_MAX,
    CONFIDENCE_MIN,
    WIN_RATE_MAX,
    WIN_RATE_MIN,
    HistoricalOutcome,
    PatternScorer,
)
from chartsage.engines.simulator import extract_trading_info
from chartsage.engines.vision_engine import VisionEngine
from chartsage.errors import InvalidInputError, VisionUnavailableError
from chartsage.models import AnalysisOutcome, AnalysisSource

log = structlog.get_logger(__name__)


class ChartAnalyzer:
    """Orchestrates vision analysis with simulator fallback."""

    def __init__(
        self,
        scorer: PatternScorer,
        vision: Optional[VisionEngine] = None,
        settings: Optional[Settings] = None,
    ):
        self.scorer = scorer
        self.vision = vision
        self._settings = settings or get_settings()

    @property
    def vision_available(self) -> bool:
        return self.vision is not None and self.vision.available

    async def analyze(
        self,
        image: str,
        history: Sequence[HistoricalOutcome] = (),
    ) -> AnalysisOutcome:
        """Analyze a chart image (data URL), preferring the vision model."""
        if self.vision_available:
            try:
                outcome = await asyncio.wait_for(
                    self.vision.analyze_chart(image),
                    timeout=self._settings.vision_timeout_seconds,
                )
            except asyncio.TimeoutError:
                log.warning(
                    "analyzer.vision_fallback",
                    reason="timeout",
                    timeout_s=self._settings.vision_timeout_seconds,
                )
            except VisionUnavailableError as exc:
                log.warning("analyzer.vision_fallback", reason=exc.reason, error=str(exc))
            except Exception as exc:
                log.error("analyzer.vision_fallback", reason="unexpected", error=str(exc))
            else:
                self._track_pair(outcome)
                return self._finalize(outcome)
        else:
            log.debug("analyzer.vision_disabled")

        return self._finalize(await self.simulate(image, history))

    async def simulate(
        self,
        image: str,
        history: Sequence[HistoricalOutcome] = (),
    ) -> AnalysisOutcome:
        """Simulated analysis driven by the pattern scorer."""
        delay = self._settings.simulated_delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)

        rng = self.scorer.rng
        details = extract_trading_info(image, rng)

        selection = self.scorer.select_pattern(details.pair, details.entry, history)
        stats = self.scorer.compute_statistics(selection.pattern, history)
        explanation = compose_explanation(
            selection.pattern,
            selection.prediction,
            stats.win_rate,
            stats.sample_size,
            details,
            rng,
        )
        self.scorer.update_pair_profile(details.pair, details.entry, selection.pattern)

        log.info(
            "analyzer.simulated",
            pair=details.pair,
            pattern=selection.pattern,
            confidence=selection.confidence,
        )
        return AnalysisOutcome(
            pattern=selection.pattern,
            prediction=selection.prediction,
            confidence=selection.confidence,
            win_rate=stats.win_rate,
            sample_size=stats.sample_size,
            explanation=explanation,
            source=AnalysisSource.SIMULATED,
            trading_details=details,
        )

    def _track_pair(self, outcome: AnalysisOutcome) -> None:
        details = outcome.trading_details
        if details is None:
            return
        try:
            self.scorer.update_pair_profile(details.pair, details.entry, outcome.pattern)
        except InvalidInputError as exc:
            log.debug("analyzer.pair_not_tracked", pair=details.pair, error=str(exc))

    @staticmethod
    def _finalize(outcome: AnalysisOutcome) -> AnalysisOutcome:
        return outcome.model_copy(update={
            "confidence": max(CONFIDENCE_MIN, min(CONFIDENCE_MAX, outcome.confidence)),
            "win_rate": max(WIN_RATE_MIN, min(WIN_RATE_MAX, outcome.win_rate)),
        })
