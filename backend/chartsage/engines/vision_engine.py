"""
ChartSage - Vision Analysis Engine

Sends a user-uploaded chart image to Gemini (via langchain-google-genai) and
turns the JSON reply into an ``AnalysisOutcome``. Every failure mode
(missing key, open circuit, API error, unparseable reply) is raised as
``VisionUnavailableError`` so the analyzer can fall back to the simulator.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import structlog
from langchain_core.messages import HumanMessage, SystemMessage

from chartsage.config import Settings, get_settings
from chartsage.errors import InvalidInputError, VisionUnavailableError
from chartsage.models import AnalysisOutcome, AnalysisSource, Prediction, TradingDetails
from chartsage.utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from chartsage.utils.validators import validate_pattern_name

log = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are an expert trading chart analyst with deep knowledge of technical analysis and chart patterns.
I'll provide you a chart image for analysis. For each chart image:

1. Identify the most prominent chart pattern (e.g., "Bullish Engulfing Pattern", "Head and Shoulders", "Double Top", etc.)
2. Determine if the likely next candle movement will be "bullish" or "bearish"
3. Assign a confidence level (1-100%) for your prediction
4. Provide an estimated historical win rate (50-90%) for this pattern based on your trading knowledge
5. Estimate a sample size (50-500) for how many historical occurrences support this win rate
6. Extract any visible trading details (pair name, timeframe, entry price, stop loss, etc.)
7. Write a detailed explanation for your prediction (150-250 words)

Respond ONLY with valid JSON in this exact format:
{
  "pattern": "Pattern Name",
  "prediction": "bullish" OR "bearish",
  "confidence": 75,
  "winRate": 70,
  "sampleSize": 250,
  "explanation": "Detailed explanation with insights...",
  "tradingDetails": {
    "pair": "BTC/USD",
    "entry": 45000,
    "stopLoss": 44000,
    "takeProfit": 47000,
    "timeframe": "4H"
  }
}"""

USER_PROMPT = (
    "Analyze this trading chart and provide a prediction for the next price movement. "
    "Include specific details about the pattern identified, price levels, and any "
    "indicators visible in the chart."
)

_REQUIRED_FIELDS = ("pattern", "prediction", "confidence", "explanation")


def _clamp_int(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(default)
    if number != number:  # NaN
        number = float(default)
    return int(max(low, min(high, round(number))))


def _as_price(value: Any) -> Optional[float]:
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def normalize_prediction(raw: Any) -> Prediction:
    """Map free-form model output onto bullish/bearish."""
    return Prediction.BULLISH if "bull" in str(raw).lower() else Prediction.BEARISH


def parse_trading_details(raw: Any) -> Optional[TradingDetails]:
    if not isinstance(raw, dict) or not raw.get("pair"):
        return None
    indicators = raw.get("indicators") or []
    return TradingDetails(
        pair=str(raw["pair"]).strip().upper(),
        entry=_as_price(raw.get("entry")),
        stop_loss=_as_price(raw.get("stopLoss")),
        take_profit=_as_price(raw.get("takeProfit")),
        timeframe=str(raw["timeframe"]) if raw.get("timeframe") else None,
        indicators=[str(i) for i in indicators] if isinstance(indicators, list) else [],
    )


def details_sentence(details: TradingDetails) -> str:
    """Trade-plan paragraph appended to a model explanation."""
    text = f"For {details.pair}"
    if details.timeframe:
        text += f" on the {details.timeframe} timeframe"
    text += ", "
    if details.entry:
        text += f"the current entry at {details.entry:g}"
        if details.stop_loss and details.take_profit:
            text += (
                f" offers a favorable risk:reward ratio with stop loss at {details.stop_loss:g}"
                f" and take profit target at {details.take_profit:g}."
            )
        else:
            text += "."
    return text


class VisionEngine:
    """Gemini Vision chart classifier.

    The LLM client is created lazily so importing this module never touches
    the network. Pass ``llm`` to inject a chat model (tests, other providers).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Any = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._settings = settings or get_settings()
        self._llm = llm
        self.breaker = breaker or CircuitBreaker(
            "gemini_vision",
            failure_threshold=self._settings.vision_failure_threshold,
            recovery_timeout=self._settings.vision_recovery_seconds,
        )

    @property
    def available(self) -> bool:
        """True when a model is injected or an API key is configured."""
        return self._llm is not None or self._settings.vision_enabled

    def _get_llm(self):
        """Lazy-init LLM to avoid import-time API calls."""
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI
            self._llm = ChatGoogleGenerativeAI(
                model=self._settings.vision_model,
                google_api_key=self._settings.google_api_key,
                temperature=self._settings.vision_temperature,
                max_output_tokens=self._settings.vision_max_output_tokens,
            )
        return self._llm

    @staticmethod
    def build_messages(image_data_url: str) -> list:
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=[
                {"type": "text", "text": USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ]),
        ]

    @staticmethod
    def _response_text(response: Any) -> str:
        content = getattr(response, "content", response)
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, str):
                    parts.append(part)
                elif isinstance(part, dict) and part.get("type") == "text":
                    parts.append(part.get("text", ""))
            content = "".join(parts)
        return content if isinstance(content, str) else ""

    @staticmethod
    def parse_json(text: str) -> dict:
        """Extract the JSON object from a reply that may be wrapped in a markdown fence."""
        match = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
        if match:
            text = match.group(1)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise VisionUnavailableError("invalid_json", f"Vision reply is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise VisionUnavailableError("invalid_json", "Vision reply is not a JSON object")
        return data

    @staticmethod
    def to_outcome(data: dict) -> AnalysisOutcome:
        """Validate and normalize a parsed vision reply."""
        missing = [f for f in _REQUIRED_FIELDS if not data.get(f)]
        if missing:
            raise VisionUnavailableError(
                "invalid_response", f"Vision reply missing fields: {', '.join(missing)}"
            )

        try:
            pattern = validate_pattern_name(str(data["pattern"]))
        except InvalidInputError as exc:
            raise VisionUnavailableError("invalid_response", f"Vision reply pattern: {exc}") from exc

        details = parse_trading_details(data.get("tradingDetails"))
        explanation = str(data["explanation"])
        if details is not None:
            explanation += "\n\n" + details_sentence(details)

        return AnalysisOutcome(
            pattern=pattern,
            prediction=normalize_prediction(data["prediction"]),
            confidence=_clamp_int(data["confidence"], 1, 100, 70),
            win_rate=_clamp_int(data.get("winRate"), 50, 90, 65),
            sample_size=_clamp_int(data.get("sampleSize"), 50, 500, 200),
            explanation=explanation,
            source=AnalysisSource.VISION,
            trading_details=details,
        )

    async def analyze_chart(self, image_data_url: str) -> AnalysisOutcome:
        """Classify a chart image.

        Raises:
            VisionUnavailableError: not configured, circuit open, API failure,
                or a reply that cannot be used.
        """
        if not self.available:
            raise VisionUnavailableError("not_configured", "No vision API key configured")

        messages = self.build_messages(image_data_url)
        try:
            llm = self._get_llm()
            response = await self.breaker.call(lambda: llm.ainvoke(messages))
        except CircuitOpenError as exc:
            raise VisionUnavailableError("circuit_open", str(exc)) from exc
        except Exception as exc:
            error_str = str(exc).lower()
            if "quota" in error_str or "rate" in error_str or "429" in error_str:
                reason = "rate_limit"
            elif "api_key" in error_str or "401" in error_str or "403" in error_str:
                reason = "auth_failure"
            else:
                reason = "api_error"
            log.warning("vision.call_failed", reason=reason, error=str(exc)[:200])
            raise VisionUnavailableError(reason, str(exc)[:200]) from exc

        text = self._response_text(response)
        if not text:
            raise VisionUnavailableError("empty_response", "No content received from vision model")

        outcome = self.to_outcome(self.parse_json(text))
        log.info(
            "vision.analyzed",
            pattern=outcome.pattern,
            prediction=outcome.prediction.value,
            confidence=outcome.confidence,
        )
        return outcome
