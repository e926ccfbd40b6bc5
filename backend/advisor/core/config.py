"""
AI configuration loaded from environment variables.

Environment configuration:
- AI_FAST_PROVIDER: groq | gemini (default: groq)
- AI_FAST_MODEL: Fast model id (default: meta-llama/llama-4-scout-17b-16e-instruct,
  or gemini-2.5-flash when the provider is gemini)
- GROQ_API_KEY / GROQ_API_BASE
- GEMINI_API_KEY / GEMINI_API_BASE
- ANTHROPIC_API_KEY / ANTHROPIC_BASE_URL
- AI_REASONING_MODEL: Reasoning model id (default: claude-sonnet-4-5)
- AI_CFO_MODEL: Top-tier model id (default: claude-opus-4-1)
- OPENAI_API_KEY / OPENAI_API_BASE
- AI_MATH_MODEL: Math model id (default: gpt-5)
- AI_MAX_TOKENS: Default max output tokens (default: 8192)
- AI_TEMPERATURE: Default sampling temperature (default: 0.7)
- AI_TIMEOUT_SECONDS: Per-attempt HTTP timeout (default: 60.0)
- AI_TOP_TIER_MODEL: Model used when the complexity router escalates (default: cfo)
- AI_TESTING_MODE: "true" bypasses quota checks (default: false)
- AI_CONTEXT_FETCH_TIMEOUT_SECONDS: Per-source context fetch timeout (default: 5.0)

There is no process-wide config object: call load_ai_config() where the
service graph is wired and pass the result down.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from advisor.core.logging import get_logger
from advisor.models.subscription import ModelAccess, SubscriptionTier

logger = get_logger(__name__)

GROQ_API_BASE = "https://api.groq.com/openai/v1"
OPENAI_API_BASE = "https://api.openai.com/v1"
ANTHROPIC_API_BASE = "https://api.anthropic.com"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# USD per 1K tokens
MODEL_COST_TABLE: Dict[str, Dict[str, float]] = {
    "meta-llama/llama-4-scout-17b-16e-instruct": {"input": 0.00011, "output": 0.00034},
    "gemini-2.5-flash": {"input": 0.0, "output": 0.0},
    "gemini-1.5-flash": {"input": 0.0, "output": 0.0},
    "gpt-5": {"input": 0.00125, "output": 0.01},
    "claude-sonnet-4-5": {"input": 0.003, "output": 0.015},
    "claude-sonnet-4-5-20250929": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-opus-4-1": {"input": 0.015, "output": 0.075},
    "claude-opus-4-1-20250805": {"input": 0.015, "output": 0.075},
}

UNLIMITED = 999999

DEFAULT_PLAN_LIMITS: Dict[SubscriptionTier, Dict[ModelAccess, int]] = {
    SubscriptionTier.FREE: {
        ModelAccess.FAST: 50,
        ModelAccess.REASONING: 0,
        ModelAccess.MATH: 0,
        ModelAccess.CFO: 0,
    },
    SubscriptionTier.PRO: {
        ModelAccess.FAST: UNLIMITED,
        ModelAccess.REASONING: 25,
        ModelAccess.MATH: 5,
        ModelAccess.CFO: 0,
    },
    SubscriptionTier.ENTERPRISE: {
        ModelAccess.FAST: UNLIMITED,
        ModelAccess.REASONING: 60,
        ModelAccess.MATH: 10,
        ModelAccess.CFO: 20,
    },
}


def estimate_cost(model_id: str, tokens_in: int, tokens_out: int) -> float:
    """Cost in USD from backend-reported tokens; unknown models cost 0."""
    rates = MODEL_COST_TABLE.get(model_id)
    if rates is None:
        logger.warning("model_cost_unknown", model=model_id)
        return 0.0
    return (tokens_in / 1000.0) * rates["input"] + (tokens_out / 1000.0) * rates["output"]


@dataclass(frozen=True)
class ModelConfig:
    """Backend settings for one ModelAccess level."""

    provider: str  # groq, openai, anthropic, gemini
    model: str
    api_key: Optional[str]
    api_key_env: str
    base_url: str
    max_tokens: int = 8192
    temperature: float = 0.7


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    jitter_ratio: float = 0.3


@dataclass(frozen=True)
class AIConfig:
    models: Dict[ModelAccess, ModelConfig]
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: float = 60.0
    top_tier_model: ModelAccess = ModelAccess.CFO
    testing_mode: bool = False
    context_fetch_timeout_seconds: float = 5.0


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_ai_config() -> AIConfig:
    """Build an AIConfig from the current environment."""
    max_tokens = int(os.getenv("AI_MAX_TOKENS", "8192") or "8192")
    temperature = float(os.getenv("AI_TEMPERATURE", "0.7") or "0.7")

    fast_provider = os.getenv("AI_FAST_PROVIDER", "groq").strip().lower()
    if fast_provider == "gemini":
        fast = ModelConfig(
            provider="gemini",
            model=os.getenv("AI_FAST_MODEL", "gemini-2.5-flash"),
            api_key=os.getenv("GEMINI_API_KEY"),
            api_key_env="GEMINI_API_KEY",
            base_url=os.getenv("GEMINI_API_BASE", GEMINI_API_BASE),
            max_tokens=max_tokens,
            temperature=temperature,
        )
    else:
        fast = ModelConfig(
            provider="groq",
            model=os.getenv("AI_FAST_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"),
            api_key=os.getenv("GROQ_API_KEY"),
            api_key_env="GROQ_API_KEY",
            base_url=os.getenv("GROQ_API_BASE", GROQ_API_BASE),
            max_tokens=max_tokens,
            temperature=temperature,
        )

    anthropic_key = os.getenv("ANTHROPIC_API_KEY")
    anthropic_base = os.getenv("ANTHROPIC_BASE_URL") or ANTHROPIC_API_BASE

    models = {
        ModelAccess.FAST: fast,
        ModelAccess.REASONING: ModelConfig(
            provider="anthropic",
            model=os.getenv("AI_REASONING_MODEL", "claude-sonnet-4-5"),
            api_key=anthropic_key,
            api_key_env="ANTHROPIC_API_KEY",
            base_url=anthropic_base,
            max_tokens=max_tokens,
            temperature=temperature,
        ),
        ModelAccess.MATH: ModelConfig(
            provider="openai",
            model=os.getenv("AI_MATH_MODEL", "gpt-5"),
            api_key=os.getenv("OPENAI_API_KEY"),
            api_key_env="OPENAI_API_KEY",
            base_url=os.getenv("OPENAI_API_BASE", OPENAI_API_BASE),
            max_tokens=max_tokens,
            temperature=temperature,
        ),
        ModelAccess.CFO: ModelConfig(
            provider="anthropic",
            model=os.getenv("AI_CFO_MODEL", "claude-opus-4-1"),
            api_key=anthropic_key,
            api_key_env="ANTHROPIC_API_KEY",
            base_url=anthropic_base,
            max_tokens=max_tokens,
            temperature=temperature,
        ),
    }

    top_tier_raw = os.getenv("AI_TOP_TIER_MODEL", ModelAccess.CFO.value).strip().lower()
    try:
        top_tier_model = ModelAccess(top_tier_raw)
    except ValueError:
        logger.warning("ai_config_invalid_top_tier_model", value=top_tier_raw)
        top_tier_model = ModelAccess.CFO

    return AIConfig(
        models=models,
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "60.0") or "60.0"),
        top_tier_model=top_tier_model,
        testing_mode=_env_bool("AI_TESTING_MODE"),
        context_fetch_timeout_seconds=float(
            os.getenv("AI_CONTEXT_FETCH_TIMEOUT_SECONDS", "5.0") or "5.0"
        ),
    )


def validate_ai_config(config: AIConfig) -> List[str]:
    """
    Check a config for problems that would make calls fail.

    Returns:
        Human-readable problems; empty when the config is usable.
    """
    problems: List[str] = []
    for access, model_config in config.models.items():
        if not model_config.api_key:
            problems.append(
                f"{access.value} model ({model_config.model}) has no API key: "
                f"set {model_config.api_key_env}"
            )
        if model_config.model not in MODEL_COST_TABLE:
            problems.append(
                f"{access.value} model ({model_config.model}) has no cost entry; "
                "usage will be recorded at $0"
            )
    if config.retry.max_attempts < 1:
        problems.append("retry.max_attempts must be at least 1")
    if config.top_tier_model == ModelAccess.FAST:
        problems.append("top tier model must not be the fast model")

    for problem in problems:
        logger.warning("ai_config_problem", problem=problem)
    return problems
