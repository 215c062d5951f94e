"""
ChartSage - Route Tests

End-to-end tests through the FastAPI app: analysis, history, feedback,
statistics, health and metrics. Runs with the simulator (no Gemini key)
and in-process storage (no Redis).
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from chartsage import metrics
from chartsage.config import Settings
from chartsage.engines.taxonomy import is_known_pattern
from chartsage.main import _worker_count, create_app
from chartsage.models import AnalysisOutcome, AnalysisSource, Prediction

IMAGE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAAB"
API = "/v1/api"


@pytest.fixture
def client():
    metrics.reset_metrics()
    settings = Settings(google_api_key="", redis_url="", random_seed=17)
    return TestClient(create_app(settings))


def _analyze(client) -> dict:
    resp = client.post(f"{API}/analyze", json={"image": IMAGE})
    assert resp.status_code == 200
    return resp.json()


# ──────────────────────────────────────────────
# Health & Metrics
# ──────────────────────────────────────────────

class TestHealthRoute:

    def test_health_response_structure(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"
        assert data["services"]["redis"]["status"] == "disabled"
        assert data["services"]["vision"]["status"] == "no_api_key"
        assert data["uptime_seconds"] >= 0

    def test_request_id_header(self, client):
        resp = client.get(f"{API}/patterns", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert resp.headers["X-API-Version"] == "v1"


class TestMetricsRoute:

    def test_metrics_exposition(self, client):
        _analyze(client)
        client.get(f"{API}/analysis/deadbeef0000")
        body = client.get("/metrics").text
        assert "# TYPE http_requests_total counter" in body
        assert 'path="/v1/api/analysis/{id}"' in body
        assert 'chartsage_analyses_total{source="simulated"} 1' in body

    def test_feedback_counter_counts_accepted_verdicts_only(self, client):
        created = _analyze(client)
        payload = {"analysisId": created["id"], "isCorrect": True}
        client.post(f"{API}/feedback", json=payload)
        client.post(f"{API}/feedback", json=payload)
        body = client.get("/metrics").text
        assert 'chartsage_feedback_total{correct="true"} 1' in body


# ──────────────────────────────────────────────
# Analysis
# ──────────────────────────────────────────────

class TestAnalyzeRoute:

    def test_analyze_returns_record(self, client):
        data = _analyze(client)
        assert is_known_pattern(data["pattern"])
        assert data["prediction"] in ("bullish", "bearish")
        assert 50 <= data["confidence"] <= 95
        assert 50 <= data["winRate"] <= 90
        assert data["sampleSize"] >= 150
        assert data["source"] == "simulated"
        assert data["feedback"] is None
        assert data["imageUrl"] == IMAGE
        assert data["tradingPair"]

    def test_bare_base64_is_accepted(self, client):
        resp = client.post(f"{API}/analyze", json={"image": "iVBORw0KGgoAAAANSUhEUgAAAAEAAAAB"})
        assert resp.status_code == 200
        assert resp.json()["imageUrl"].startswith("data:image/png;base64,")

    def test_non_image_payload_rejected(self, client):
        resp = client.post(f"{API}/analyze", json={"image": "data:text/plain;base64,aGVsbG8gd29ybGQ="})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] is True
        assert body["status_code"] == 400

    def test_missing_image_is_validation_error(self, client):
        resp = client.post(f"{API}/analyze", json={})
        assert resp.status_code == 422
        assert resp.json()["errors"]

    def test_get_analysis(self, client):
        created = _analyze(client)
        resp = client.get(f"{API}/analysis/{created['id']}")
        assert resp.status_code == 200
        assert resp.json() == created

    def test_get_unknown_analysis(self, client):
        resp = client.get(f"{API}/analysis/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Analysis 'nope' not found"


class TestHistoryRoute:

    def test_history_newest_first(self, client):
        ids = [_analyze(client)["id"] for _ in range(3)]
        data = client.get(f"{API}/history").json()
        assert [r["id"] for r in data] == ids[::-1]

    def test_history_limit(self, client):
        for _ in range(3):
            _analyze(client)
        assert len(client.get(f"{API}/history?limit=2").json()) == 2

    def test_history_limit_bounds(self, client):
        assert client.get(f"{API}/history?limit=0").status_code == 422


# ──────────────────────────────────────────────
# Feedback & Learning
# ──────────────────────────────────────────────

class TestFeedbackRoute:

    def test_feedback_updates_record_and_learning(self, client):
        created = _analyze(client)
        resp = client.post(f"{API}/feedback", json={"analysisId": created["id"], "isCorrect": True})
        assert resp.status_code == 200
        assert resp.json()["feedback"] is True

        learning = client.get(f"{API}/patterns").json()["learning"]
        state = learning[created["pattern"]]
        assert state["feedbackCount"] == 1
        assert state["successCount"] == 1
        assert state["confidenceAdjustment"] == 1
        assert state["successRate"] == 1.0

    def test_unknown_id_is_404(self, client):
        resp = client.post(f"{API}/feedback", json={"analysisId": "missing", "isCorrect": True})
        assert resp.status_code == 404

    def test_second_submission_is_409(self, client):
        created = _analyze(client)
        payload = {"analysisId": created["id"], "isCorrect": False}
        assert client.post(f"{API}/feedback", json=payload).status_code == 200
        resp = client.post(f"{API}/feedback", json=payload)
        assert resp.status_code == 409

        learning = client.get(f"{API}/patterns").json()["learning"]
        assert learning[created["pattern"]]["feedbackCount"] == 1

    def test_unlearnable_pattern_is_rejected_before_storing(self, client):
        store = client.app.state.analysis_store
        record = store.save(
            AnalysisOutcome(
                pattern="Head and\nShoulders",
                prediction=Prediction.BEARISH,
                confidence=70,
                win_rate=65,
                sample_size=200,
                explanation="text",
                source=AnalysisSource.VISION,
            ),
            IMAGE,
        )
        payload = {"analysisId": record.id, "isCorrect": True}

        for _ in range(2):
            resp = client.post(f"{API}/feedback", json=payload)
            assert resp.status_code == 400

        assert store.get(record.id).feedback is None
        assert client.get(f"{API}/patterns").json()["learning"] == {}


class TestStatsRoutes:

    def test_ai_stats(self, client):
        created = _analyze(client)
        _analyze(client)
        client.post(f"{API}/feedback", json={"analysisId": created["id"], "isCorrect": True})

        data = client.get(f"{API}/ai/stats").json()
        assert data["totalAnalyses"] == 2
        assert data["feedbackCount"] == 1
        assert data["overallAccuracy"] == 100.0
        assert data["patternsLearned"] >= 1
        assert data["topPatterns"] == []
        assert data["learningStatus"] == "initializing"
        assert data["visionAvailable"] is False

    def test_pair_stats(self, client):
        created = _analyze(client)
        pairs = client.get(f"{API}/pairs/stats").json()
        pair = pairs[created["tradingPair"]]
        assert pair["topPatterns"][0] == {"pattern": created["pattern"], "occurrences": 1}
        assert pair["averageAccuracy"] is None
        assert pair["volatility"] in ("low", "medium", "high")
        assert "volatilityValue" in pair and "firstSeen" in pair

    def test_patterns_taxonomy(self, client):
        data = client.get(f"{API}/patterns").json()
        assert set(data["categories"]) == {
            "continuation", "reversal", "consolidation", "breakout", "candlestick",
        }
        assert data["learning"] == {}


class TestWorkerCount:

    @pytest.mark.parametrize("env,expected", [
        ({}, 1),
        ({"WEB_CONCURRENCY": "4"}, 4),
        ({"UVICORN_WORKERS": "2"}, 2),
        ({"WEB_CONCURRENCY": "many"}, 1),
    ])
    def test_worker_count_from_env(self, monkeypatch, env, expected):
        monkeypatch.delenv("WEB_CONCURRENCY", raising=False)
        monkeypatch.delenv("UVICORN_WORKERS", raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        assert _worker_count() == expected
