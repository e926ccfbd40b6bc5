"""
Wiring for the advice stack.

create_advisor() builds fresh, explicitly owned instances: one client per
model, the hybrid service, the tier-aware router and, when Redis is
configured, a usage counter handed to the storage. Nothing is cached at
module level, so tests and callers can hold several independent stacks.
"""
import os
import random
from typing import Optional

import httpx

from advisor.core.config import AIConfig, load_ai_config, validate_ai_config
from advisor.core.logging import configure_logging, get_logger
from advisor.core.tracing import configure_tracing
from advisor.services.ai.clients import build_model_clients
from advisor.services.ai.clients.base import SleepFn
from advisor.services.ai.hybrid import HybridAdviceService
from advisor.services.ai.tier_router import TierAwareRouter
from advisor.storage.base import AdvisorStorage
from advisor.storage.redis_usage import connect_usage_counter

logger = get_logger(__name__)


def create_advisor(
    storage: AdvisorStorage,
    config: Optional[AIConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[SleepFn] = None,
    rng: Optional[random.Random] = None,
    redis_url: Optional[str] = None,
) -> TierAwareRouter:
    """
    Build a TierAwareRouter over the given storage.

    Args:
        storage: Data and quota store
        config: AI configuration (read from the environment when omitted)
        transport: httpx transport shared by all clients (tests pass a MockTransport)
        sleep: Backoff sleep override for retries
        rng: Random source for retry jitter
        redis_url: Redis URL for usage counters (REDIS_URL when omitted); the
            storage keeps its own counters when neither is set or it declines
    """
    config = config or load_ai_config()
    problems = validate_ai_config(config)

    usage_counter = connect_usage_counter(redis_url)
    if usage_counter is not None and not storage.use_usage_counter(usage_counter):
        logger.warning("usage_counter_unsupported", storage=type(storage).__name__)
        usage_counter = None

    clients = build_model_clients(config, transport=transport, sleep=sleep, rng=rng)
    service = HybridAdviceService(
        clients,
        top_model=config.top_tier_model,
        context_fetch_timeout_seconds=config.context_fetch_timeout_seconds,
    )
    router = TierAwareRouter(storage, service, testing_mode=config.testing_mode)

    logger.info(
        "advisor_created",
        models={access.value: client.model for access, client in clients.items()},
        top_tier_model=config.top_tier_model.value,
        testing_mode=config.testing_mode,
        redis_usage_counters=usage_counter is not None,
        config_problems=len(problems),
    )
    return router


def configure_observability() -> None:
    """
    Configure logging and tracing from the environment.

    Call once at process start, before create_advisor().

    - LOG_LEVEL: Logging level (default: INFO)
    - LOG_JSON: "true" for JSON output, anything else for console (default: true)
    - OTEL_*: see advisor.core.tracing
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_output = os.getenv("LOG_JSON", "true").lower() == "true"
    configure_logging(log_level=log_level, json_output=json_output)
    configure_tracing()
