"""
Provider-agnostic model client.

Design constraints:
- No vendor SDKs: every backend is spoken to over httpx
- One normalized response shape (AIResponse / StreamChunk) for all providers
- Retries on transient failures with exponential backoff and jitter
- Failures surface as AIClientError with a user-safe message

Subclasses only describe their wire protocol: how to build a request, how to
read a complete response, and how to turn streamed events into chunks.
"""
import asyncio
import json
import random
import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
)

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from advisor.core.config import ModelConfig, RetryConfig, estimate_cost
from advisor.core.errors import (
    AIClientError,
    MissingAPIKeyError,
    ProviderResponseError,
    is_retryable_error,
    to_client_error,
)
from advisor.core.logging import get_logger
from advisor.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_retry,
    record_llm_tokens_and_cost,
)
from advisor.core.tracing import get_tracer, record_exception, set_span_attribute
from advisor.models.responses import AIResponse, StreamChunk

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ChatOptions(BaseModel):
    """A single chat request, independent of provider."""

    messages: List[Dict[str, str]]
    system: Optional[str] = None
    tools: Optional[List[Dict[str, Any]]] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class StreamEvent(BaseModel):
    """One server-sent event."""

    event: Optional[str] = None
    data: str = ""


class StreamState(BaseModel):
    """Accumulated usage and partial tool calls while a stream is read."""

    tokens_in: int = 0
    tokens_out: int = 0
    model: Optional[str] = None
    pending_tools: Dict[int, Dict[str, Any]] = Field(default_factory=dict)
    finished: bool = False


def coerce_tool_arguments(args: Any) -> Any:
    """
    Normalize tool-call arguments produced by a model.

    "true"/"false" in any letter case become booleans; nested dicts (also
    inside lists) are coerced recursively. Numeric strings stay strings.
    """
    if isinstance(args, dict):
        return {key: coerce_tool_arguments(value) for key, value in args.items()}
    if isinstance(args, list):
        return [coerce_tool_arguments(item) for item in args]
    if isinstance(args, str):
        lowered = args.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return args


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Tool arguments arrive either as a JSON string or as an object."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("tool_arguments_invalid_json", raw=raw[:200])
            return {}
    if not isinstance(raw, dict):
        return {}
    return coerce_tool_arguments(raw)


class ExponentialJitterWait(wait_base):
    """
    Delay before retry n (1-based): min(base * 2**(n-1), max), scaled by a
    uniform factor in [1 - jitter, 1 + jitter].
    """

    def __init__(self, retry: RetryConfig, rng: Optional[random.Random] = None):
        self.base = retry.base_delay_seconds
        self.maximum = retry.max_delay_seconds
        self.jitter = retry.jitter_ratio
        self.rng = rng or random.Random()

    def delay_for(self, attempt_number: int) -> float:
        delay = min(self.base * (2 ** (attempt_number - 1)), self.maximum)
        factor = 1.0 + self.rng.uniform(-self.jitter, self.jitter)
        return max(0.0, delay * factor)

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number)


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[StreamEvent]:
    """Parse a text/event-stream body into events (blank line terminates one)."""
    event_name: Optional[str] = None
    data_lines: List[str] = []
    async for line in response.aiter_lines():
        if line == "":
            if data_lines:
                yield StreamEvent(event=event_name, data="\n".join(data_lines))
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield StreamEvent(event=event_name, data="\n".join(data_lines))


def _retry_reason(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return str(exc.response.status_code)
    return type(exc).__name__


class BaseModelClient(ABC):
    """Async HTTP client for one configured backend model."""

    provider: str = "base"
    supports_tools: bool = True

    def __init__(
        self,
        config: ModelConfig,
        retry: Optional[RetryConfig] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.retry = retry or RetryConfig()
        self.timeout_seconds = timeout_seconds
        self.api_base = config.base_url.rstrip("/")
        self._transport = transport
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._wait = ExponentialJitterWait(self.retry, rng)

    @property
    def model(self) -> str:
        return self.config.model

    # ------------------------------------------------------------------
    # Provider protocol
    # ------------------------------------------------------------------

    @abstractmethod
    def build_request(
        self, options: ChatOptions, stream: bool
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Return (url, headers, json payload)."""

    @abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> AIResponse:
        """Turn a complete response body into an AIResponse (cost filled later)."""

    @abstractmethod
    def parse_stream_event(
        self, event: StreamEvent, state: StreamState
    ) -> Iterable[StreamChunk]:
        """Turn one server-sent event into zero or more text/tool_call chunks."""

    def finalize_stream(self, state: StreamState) -> Iterable[StreamChunk]:
        """Chunks to emit once the provider closes the stream."""
        return ()

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _ensure_api_key(self) -> None:
        if not self.config.api_key:
            record_llm_error(self.model, "missing_api_key")
            raise MissingAPIKeyError(self.model, self.config.api_key_env)

    def _effective(self, options: ChatOptions) -> Tuple[int, float]:
        max_tokens = options.max_tokens or self.config.max_tokens
        temperature = (
            options.temperature
            if options.temperature is not None
            else self.config.temperature
        )
        return max_tokens, temperature

    def _tools_for(self, options: ChatOptions) -> Optional[List[Dict[str, Any]]]:
        if not self.supports_tools or not options.tools:
            return None
        return options.tools

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderResponseError(f"non-JSON body from {self.provider}") from exc
        if not isinstance(data, dict):
            raise ProviderResponseError(f"unexpected body type from {self.provider}")
        return data

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = _retry_reason(exc) if exc else "unknown"
        record_llm_retry(self.model, reason)
        logger.warning(
            "llm_retry",
            model=self.model,
            provider=self.provider,
            attempt=retry_state.attempt_number,
            delay_seconds=round(retry_state.upcoming_sleep, 3),
            reason=reason,
        )

    def _fail(self, exc: BaseException) -> AIClientError:
        error = to_client_error(exc, self.model)
        record_llm_error(self.model, error.error_type.value)
        logger.warning(
            "llm_request_failed",
            model=self.model,
            provider=self.provider,
            error_type=error.error_type.value,
            status_code=error.status_code,
            error=str(exc),
        )
        return error

    def _complete(self, response: AIResponse) -> AIResponse:
        cost = estimate_cost(self.model, response.tokens_in, response.tokens_out)
        record_llm_tokens_and_cost(
            model=self.model,
            input_tokens=response.tokens_in,
            output_tokens=response.tokens_out,
            cost_usd=cost,
        )
        return response.model_copy(update={"cost": cost})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(self, options: ChatOptions) -> AIResponse:
        """
        Send a chat request and return the normalized response.

        Retries 429, 5xx, timeouts and connection resets up to
        retry.max_attempts total attempts; anything else fails at once.

        Raises:
            AIClientError: classified failure with a user-safe message.
        """
        self._ensure_api_key()
        url, headers, payload = self.build_request(options, stream=False)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(is_retryable_error),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        tracer = get_tracer()
        with tracer.start_as_current_span("llm.chat", record_exception=False) as span:
            set_span_attribute(span, "llm.provider", self.provider)
            set_span_attribute(span, "llm.model", self.model)
            start = time.time()
            status = "error"
            try:
                data = await retrying(self._post, url, headers, payload)
                response = self._complete(self.parse_response(data))
                status = "success"
            except Exception as exc:
                record_exception(span, exc)
                raise self._fail(exc) from exc
            finally:
                record_llm_request(self.model, status, time.time() - start)

            set_span_attribute(span, "llm.tokens_in", response.tokens_in)
            set_span_attribute(span, "llm.tokens_out", response.tokens_out)
            logger.info(
                "llm_chat_completed",
                model=response.model,
                provider=self.provider,
                tokens_in=response.tokens_in,
                tokens_out=response.tokens_out,
                cost_usd=response.cost,
                has_tool_calls=bool(response.tool_calls),
            )
            return response

    async def chat_stream(self, options: ChatOptions) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response as text/tool_call chunks, then done or error.

        Retries only happen before the first chunk has been yielded. Closing
        the generator closes the provider connection.
        """
        try:
            self._ensure_api_key()
        except AIClientError as exc:
            yield StreamChunk(
                type="error", error=exc.user_message, error_type=exc.error_type.value
            )
            return

        url, headers, payload = self.build_request(options, stream=True)
        emitted = False
        attempt = 0
        start = time.time()

        while True:
            attempt += 1
            state = StreamState()
            try:
                async with self._client() as client:
                    async with client.stream("POST", url, headers=headers, json=payload) as response:
                        if response.is_error:
                            await response.aread()
                            response.raise_for_status()
                        async with aclosing(iter_sse_events(response)) as events:
                            async for event in events:
                                for chunk in self.parse_stream_event(event, state):
                                    emitted = True
                                    yield chunk
                                if state.finished:
                                    break
                for chunk in self.finalize_stream(state):
                    emitted = True
                    yield chunk
                break
            except Exception as exc:
                if (
                    not emitted
                    and attempt < self.retry.max_attempts
                    and is_retryable_error(exc)
                ):
                    delay = self._wait.delay_for(attempt)
                    reason = _retry_reason(exc)
                    record_llm_retry(self.model, reason)
                    logger.warning(
                        "llm_stream_retry",
                        model=self.model,
                        provider=self.provider,
                        attempt=attempt,
                        delay_seconds=round(delay, 3),
                        reason=reason,
                    )
                    await self._sleep(delay)
                    continue
                error = self._fail(exc)
                record_llm_request(self.model, "error", time.time() - start)
                yield StreamChunk(
                    type="error",
                    error=error.user_message,
                    error_type=error.error_type.value,
                    model=self.model,
                )
                return

        record_llm_request(self.model, "success", time.time() - start)
        cost = estimate_cost(self.model, state.tokens_in, state.tokens_out)
        record_llm_tokens_and_cost(
            model=self.model,
            input_tokens=state.tokens_in,
            output_tokens=state.tokens_out,
            cost_usd=cost,
        )
        yield StreamChunk(
            type="done",
            tokens_in=state.tokens_in,
            tokens_out=state.tokens_out,
            cost=cost,
            model=state.model or self.model,
        )
