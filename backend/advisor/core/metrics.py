"""
Prometheus metrics collection module.

Metrics Categories:
- LLM Metrics: requests, latency, retries, errors, tokens, cost per backend model
- Routing Metrics: escalations, tier downgrades, quota exhaustion
- Orchestrator Metrics: structured-analysis runs and schema failures
- Pipeline Metrics: context fetch failures, usage tracking failures, advice requests

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

from advisor.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "advisor_llm_requests_total",
    "Total number of model backend calls",
    ["model", "status"],  # status: success, error
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "advisor_llm_request_duration_seconds",
    "Model backend call latency in seconds (including retries)",
    ["model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0],
    registry=registry,
)

llm_retries_total = Counter(
    "advisor_llm_retries_total",
    "Total number of retried model backend attempts",
    ["model", "reason"],
    registry=registry,
)

llm_errors_total = Counter(
    "advisor_llm_errors_total",
    "Total number of failed model backend calls by error type",
    ["model", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "advisor_llm_tokens_total",
    "Backend-reported tokens consumed",
    ["model", "direction"],  # direction: input, output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "advisor_llm_cost_usd_total",
    "Estimated model spend in USD",
    ["model"],
    registry=registry,
)

# ============================================================================
# ROUTING METRICS
# ============================================================================

routing_decisions_total = Counter(
    "advisor_routing_decisions_total",
    "Complexity routing decisions",
    ["decision"],  # fast, top
    registry=registry,
)

tier_downgrades_total = Counter(
    "advisor_tier_downgrades_total",
    "Requests served by a fallback model because the preferred model was out of quota",
    ["tier", "from_model", "to_model"],
    registry=registry,
)

quota_exceeded_total = Counter(
    "advisor_quota_exceeded_total",
    "Requests rejected because no allowed model had quota left",
    ["tier", "model"],
    registry=registry,
)

# ============================================================================
# ORCHESTRATOR METRICS
# ============================================================================

orchestrator_runs_total = Counter(
    "advisor_orchestrator_runs_total",
    "Domain orchestrator runs",
    ["orchestrator", "status"],  # status: success, schema_invalid, client_error
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

advice_requests_total = Counter(
    "advisor_advice_requests_total",
    "Advice responses produced",
    ["model", "escalated", "path"],  # path: fast, orchestrator, reasoning
    registry=registry,
)

context_fetch_failures_total = Counter(
    "advisor_context_fetch_failures_total",
    "Financial context source fetches that failed or timed out",
    ["source"],
    registry=registry,
)

usage_tracking_failures_total = Counter(
    "advisor_usage_tracking_failures_total",
    "Usage log or counter writes that failed after a successful response",
    registry=registry,
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def record_llm_request(model: str, status: str, duration_seconds: float) -> None:
    llm_requests_total.labels(model=model, status=status).inc()
    llm_request_duration_seconds.labels(model=model).observe(duration_seconds)


def record_llm_retry(model: str, reason: str) -> None:
    llm_retries_total.labels(model=model, reason=reason).inc()


def record_llm_error(model: str, error_type: str) -> None:
    llm_errors_total.labels(model=model, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    """Record backend-reported token usage and the derived cost."""
    if input_tokens > 0:
        llm_tokens_total.labels(model=model, direction="input").inc(input_tokens)
    if output_tokens > 0:
        llm_tokens_total.labels(model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(model=model).inc(cost_usd)


def record_routing_decision(decision: str) -> None:
    routing_decisions_total.labels(decision=decision).inc()


def record_tier_downgrade(tier: str, from_model: str, to_model: str) -> None:
    tier_downgrades_total.labels(
        tier=tier, from_model=from_model, to_model=to_model
    ).inc()


def record_quota_exceeded(tier: str, model: str) -> None:
    quota_exceeded_total.labels(tier=tier, model=model).inc()


def record_orchestrator_run(orchestrator: str, status: str) -> None:
    orchestrator_runs_total.labels(orchestrator=orchestrator, status=status).inc()


def record_advice_request(model: str, escalated: bool, path: str) -> None:
    advice_requests_total.labels(
        model=model, escalated=str(escalated).lower(), path=path
    ).inc()


def record_context_fetch_failure(source: str) -> None:
    context_fetch_failures_total.labels(source=source).inc()


def record_usage_tracking_failure() -> None:
    usage_tracking_failures_total.inc()


def get_metrics() -> bytes:
    """Metrics in Prometheus exposition format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
