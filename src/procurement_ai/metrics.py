from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "server_requests_total",
    "Total HTTP requests handled by server",
    labelnames=["path", "status"],
)

server_request_latency_seconds = Histogram(
    "server_request_latency_seconds",
    "HTTP request latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["path"],
)

server_errors_total = Counter(
    "server_errors_total",
    "Total errors returned by server",
    labelnames=["type"],
)

completions_total = Counter(
    "llm_completions_total",
    "Completion calls by provider and outcome",
    labelnames=["provider", "status"],
)

completion_retries_total = Counter(
    "llm_completion_retries_total",
    "Rate-limited attempts that were retried",
    labelnames=["provider"],
)

completion_latency_seconds = Histogram(
    "llm_completion_latency_seconds",
    "Completion latency including backoff waits",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["provider"],
)

analysis_cache_events_total = Counter(
    "analysis_cache_events_total",
    "Analysis cache lookups",
    labelnames=["event"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
