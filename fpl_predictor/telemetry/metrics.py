"""
Prometheus metrics for the request gate, the FPL provider and the pipelines.

Labels are restricted to low-cardinality values:
- outcome:      "allowed", "missing_api_key", "invalid_api_key_format",
                "invalid_api_key", "api_key_disabled", "service_unavailable",
                "rate_limited"
- resource:     "bootstrap", "fixtures", "current_gameweek", "health"
- status_code:  "200", "404", "500", "0" (network error)
- pipeline:     "sync", "train", "generate"
- status:       "ok", "partial", "error", "skipped"

API keys, fixture ids and team names are never used as labels; use the logs
for per-entity debugging.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# REQUEST GATE
# =============================================================================

gate_decisions_total = Counter(
    "fpl_gate_decisions_total",
    "Authentication and rate-limit decisions made by the request gate",
    ["outcome"],
)

gate_request_latency_ms = Histogram(
    "fpl_gate_request_latency_ms",
    "Latency of gated requests in milliseconds (handler included)",
    [],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 30000],
)

usage_log_failures_total = Counter(
    "fpl_usage_log_failures_total",
    "Usage events that could not be persisted",
    [],
)

# =============================================================================
# FPL PROVIDER
# =============================================================================

provider_requests_total = Counter(
    "fpl_provider_requests_total",
    "Requests sent to the FPL API, retries included",
    ["resource", "status_code"],
)

provider_latency_ms = Histogram(
    "fpl_provider_latency_ms",
    "FPL API request latency in milliseconds",
    ["resource"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

# =============================================================================
# PIPELINES
# =============================================================================

pipeline_runs_total = Counter(
    "fpl_pipeline_runs_total",
    "Sync, training and generation runs by result",
    ["pipeline", "status"],
)

pipeline_duration_ms = Histogram(
    "fpl_pipeline_duration_ms",
    "Pipeline run duration in milliseconds",
    ["pipeline"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000],
)

predictions_saved_total = Counter(
    "fpl_predictions_saved_total",
    "Predictions persisted, split by whether the fallback distribution was used",
    ["fallback"],
)


def record_gate_decision(outcome: str) -> None:
    try:
        gate_decisions_total.labels(outcome=outcome).inc()
    except Exception as e:
        logger.warning(f"Failed to record gate decision metric: {e}")


def record_gate_latency(latency_ms: float) -> None:
    try:
        gate_request_latency_ms.observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record gate latency metric: {e}")


def record_usage_log_failure() -> None:
    try:
        usage_log_failures_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record usage log failure metric: {e}")


def record_provider_request(resource: str, status_code: int, latency_ms: float) -> None:
    """Record one HTTP attempt against the FPL API."""
    try:
        provider_requests_total.labels(resource=resource, status_code=str(status_code)).inc()
        provider_latency_ms.labels(resource=resource).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record provider request metric: {e}")


def record_pipeline_run(pipeline: str, status: str, duration_ms: float) -> None:
    try:
        pipeline_runs_total.labels(pipeline=pipeline, status=status).inc()
        pipeline_duration_ms.labels(pipeline=pipeline).observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record pipeline metric: {e}")


def record_prediction_saved(fallback: bool) -> None:
    try:
        predictions_saved_total.labels(fallback=str(fallback).lower()).inc()
    except Exception as e:
        logger.warning(f"Failed to record prediction metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
