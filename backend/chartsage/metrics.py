"""
ChartSage - Prometheus-Compatible Metrics

In-process metrics with text exposition at ``GET /metrics``:

- http_requests_total{method, path, status}
- http_request_duration_seconds{method, path} (summary)
- chartsage_analyses_total{source}
- chartsage_feedback_total{correct}
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict

from fastapi import APIRouter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

_request_counts: dict[tuple[str, str, int], int] = defaultdict(int)
_request_durations: dict[tuple[str, str], list[float]] = defaultdict(list)
_analysis_counts: dict[str, int] = defaultdict(int)
_feedback_counts: dict[bool, int] = defaultdict(int)
_lock = threading.Lock()

_MAX_DURATION_SAMPLES = 1000

# Segments followed by an identifier
_ID_PARENTS = frozenset({"analysis"})


def _bucket_path(path: str) -> str:
    """Collapse variable path segments to keep label cardinality bounded.

    >>> _bucket_path("/v1/api/analysis/3f9a1c2b7d4e")
    '/v1/api/analysis/{id}'
    """
    parts = path.strip("/").split("/")
    normalized: list[str] = []
    for part in parts:
        if normalized and normalized[-1] in _ID_PARENTS:
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized) if normalized else path


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    bucket = _bucket_path(path)
    with _lock:
        _request_counts[(method, bucket, status_code)] += 1
        durations = _request_durations[(method, bucket)]
        durations.append(duration)
        if len(durations) > _MAX_DURATION_SAMPLES:
            _request_durations[(method, bucket)] = durations[-_MAX_DURATION_SAMPLES:]


def record_analysis(source: str) -> None:
    with _lock:
        _analysis_counts[source] += 1


def record_feedback(is_correct: bool) -> None:
    with _lock:
        _feedback_counts[is_correct] += 1


def reset_metrics() -> None:
    """Clear all collected metrics (for testing)."""
    with _lock:
        _request_counts.clear()
        _request_durations.clear()
        _analysis_counts.clear()
        _feedback_counts.clear()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collects per-request metrics for Prometheus exposition."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        record_request(
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration=time.perf_counter() - start,
        )
        return response


metrics_router = APIRouter()


def _quantile(sorted_values: list[float], q: float) -> float:
    return sorted_values[min(int(len(sorted_values) * q), len(sorted_values) - 1)]


def format_prometheus() -> str:
    """Render all metrics in Prometheus text exposition format."""
    with _lock:
        counts = sorted(_request_counts.items())
        durations = sorted((k, list(v)) for k, v in _request_durations.items())
        analyses = sorted(_analysis_counts.items())
        feedback = sorted(_feedback_counts.items())

    lines = [
        "# HELP http_requests_total Total HTTP requests processed.",
        "# TYPE http_requests_total counter",
    ]
    for (method, path, status), count in counts:
        lines.append(
            f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
        )

    lines += [
        "",
        "# HELP http_request_duration_seconds HTTP request duration in seconds.",
        "# TYPE http_request_duration_seconds summary",
    ]
    for (method, path), samples in durations:
        if not samples:
            continue
        ordered = sorted(samples)
        label = f'method="{method}",path="{path}"'
        for q in (0.5, 0.95, 0.99):
            lines.append(
                f'http_request_duration_seconds{{{label},quantile="{q}"}} {_quantile(ordered, q):.6f}'
            )
        lines.append(f"http_request_duration_seconds_sum{{{label}}} {sum(samples):.6f}")
        lines.append(f"http_request_duration_seconds_count{{{label}}} {len(samples)}")

    lines += [
        "",
        "# HELP chartsage_analyses_total Chart analyses completed, by producing stage.",
        "# TYPE chartsage_analyses_total counter",
    ]
    for source, count in analyses:
        lines.append(f'chartsage_analyses_total{{source="{source}"}} {count}')

    lines += [
        "",
        "# HELP chartsage_feedback_total User feedback verdicts received.",
        "# TYPE chartsage_feedback_total counter",
    ]
    for correct, count in feedback:
        lines.append(f'chartsage_feedback_total{{correct="{str(correct).lower()}"}} {count}')

    lines.append("")
    return "\n".join(lines)


@metrics_router.get("/metrics", include_in_schema=False)
async def get_metrics():
    """Prometheus-compatible metrics endpoint."""
    return PlainTextResponse(
        content=format_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
