"""
Model client layer.

build_model_clients() creates one client per ModelAccess from an AIConfig.
Callers own the returned mapping; there is no module-level client cache.
"""
import random
from typing import Dict, Optional, Type

import httpx

from advisor.core.config import AIConfig, ModelConfig
from advisor.models.subscription import ModelAccess
from advisor.services.ai.clients.anthropic import AnthropicClient
from advisor.services.ai.clients.base import (
    BaseModelClient,
    ChatOptions,
    SleepFn,
    coerce_tool_arguments,
)
from advisor.services.ai.clients.gemini import GeminiClient
from advisor.services.ai.clients.openai_compatible import OpenAICompatibleClient

PROVIDER_CLIENTS: Dict[str, Type[BaseModelClient]] = {
    "groq": OpenAICompatibleClient,
    "openai": OpenAICompatibleClient,
    "anthropic": AnthropicClient,
    "gemini": GeminiClient,
}


def build_model_client(
    model_config: ModelConfig,
    config: AIConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[SleepFn] = None,
    rng: Optional[random.Random] = None,
) -> BaseModelClient:
    client_cls = PROVIDER_CLIENTS.get(model_config.provider)
    if client_cls is None:
        raise ValueError(f"Unsupported provider: {model_config.provider}")
    kwargs = dict(
        retry=config.retry,
        timeout_seconds=config.timeout_seconds,
        transport=transport,
        sleep=sleep,
        rng=rng,
    )
    if model_config.provider == "groq":
        # The fast Groq model is used without tools
        return OpenAICompatibleClient(model_config, supports_tools=False, **kwargs)
    return client_cls(model_config, **kwargs)


def build_model_clients(
    config: AIConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[SleepFn] = None,
    rng: Optional[random.Random] = None,
) -> Dict[ModelAccess, BaseModelClient]:
    return {
        access: build_model_client(model_config, config, transport, sleep, rng)
        for access, model_config in config.models.items()
    }


__all__ = [
    "AnthropicClient",
    "BaseModelClient",
    "ChatOptions",
    "GeminiClient",
    "OpenAICompatibleClient",
    "build_model_client",
    "build_model_clients",
    "coerce_tool_arguments",
]
