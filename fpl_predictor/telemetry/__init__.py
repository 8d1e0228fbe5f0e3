"""
Telemetry: Prometheus metrics and optional Sentry error tracking.
"""

from fpl_predictor.telemetry.metrics import (
    gate_decisions_total,
    gate_request_latency_ms,
    get_metrics_text,
    pipeline_runs_total,
    provider_requests_total,
    record_gate_decision,
    record_gate_latency,
    record_pipeline_run,
    record_prediction_saved,
    record_provider_request,
    record_usage_log_failure,
)
from fpl_predictor.telemetry.sentry import capture_exception, init_sentry, scrub_sensitive_data

__all__ = [
    # Metrics
    "gate_decisions_total",
    "gate_request_latency_ms",
    "pipeline_runs_total",
    "provider_requests_total",
    # Helpers
    "record_gate_decision",
    "record_gate_latency",
    "record_pipeline_run",
    "record_prediction_saved",
    "record_provider_request",
    "record_usage_log_failure",
    "get_metrics_text",
    # Sentry
    "init_sentry",
    "capture_exception",
    "scrub_sensitive_data",
]
