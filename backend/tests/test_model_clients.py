"""
Unit tests for the model client layer.

Tests verify:
- Transient failures are retried with backoff, others fail at once
- Failures are classified into user-safe AIClientError types
- Tool-call arguments are coerced
- Streaming for OpenAI-compatible, Anthropic and Gemini backends
- Streams never retry once output has been yielded

All HTTP traffic goes through httpx.MockTransport.
"""
import json
import random
from typing import List

import httpx
import pytest

from advisor.core.config import ModelConfig, RetryConfig, estimate_cost
from advisor.core.errors import AIClientError, AIErrorType, MissingAPIKeyError
from advisor.services.ai.clients import (
    AnthropicClient,
    ChatOptions,
    GeminiClient,
    OpenAICompatibleClient,
    coerce_tool_arguments,
)
from advisor.services.ai.clients.base import ExponentialJitterWait

OPENAI_OK = {
    "model": "gpt-5",
    "choices": [{"message": {"role": "assistant", "content": "Pay the card first."}}],
    "usage": {"prompt_tokens": 1000, "completion_tokens": 100},
}


class RecordingSleep:
    """Collects requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def model_config(provider: str, model: str, api_key="test-key") -> ModelConfig:
    return ModelConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        api_key_env=f"{provider.upper()}_API_KEY",
        base_url=f"https://{provider}.test",
    )


def scripted_transport(responses, requests=None):
    """MockTransport answering with the given responses in order."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return queue.pop(0)

    return httpx.MockTransport(handler)


def sse(*events: str) -> httpx.Response:
    body = "".join(f"{event}\n\n" for event in events)
    return httpx.Response(
        200, content=body.encode(), headers={"content-type": "text/event-stream"}
    )


def options(**kwargs) -> ChatOptions:
    return ChatOptions(messages=[{"role": "user", "content": "hi"}], **kwargs)


class TestRetries:
    """Retry and classification behavior of chat()."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors_then_succeeds(self):
        sleep = RecordingSleep()
        transport = scripted_transport([
            httpx.Response(503, json={"error": "overloaded"}),
            httpx.Response(503, json={"error": "overloaded"}),
            httpx.Response(200, json=OPENAI_OK),
        ])
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"),
            transport=transport,
            sleep=sleep,
            rng=random.Random(7),
        )

        response = await client.chat(options())

        assert response.text == "Pay the card first."
        assert response.tokens_in == 1000
        assert response.tokens_out == 100
        assert response.cost == pytest.approx(estimate_cost("gpt-5", 1000, 100))
        assert len(sleep.delays) == 2
        assert 0.7 <= sleep.delays[0] <= 1.3
        assert 1.4 <= sleep.delays[1] <= 2.6

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        sleep = RecordingSleep()
        transport = scripted_transport([httpx.Response(429, json={})] * 3)
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"), transport=transport, sleep=sleep
        )

        with pytest.raises(AIClientError) as exc_info:
            await client.chat(options())

        assert exc_info.value.error_type == AIErrorType.RATE_LIMIT
        assert exc_info.value.status_code == 429
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self):
        sleep = RecordingSleep()
        requests: List[httpx.Request] = []
        transport = scripted_transport([httpx.Response(400, json={"error": "bad"})], requests)
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"), transport=transport, sleep=sleep
        )

        with pytest.raises(AIClientError) as exc_info:
            await client.chat(options())

        assert exc_info.value.error_type == AIErrorType.UNKNOWN
        assert len(requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_auth_error_has_user_safe_message(self):
        transport = scripted_transport(
            [httpx.Response(401, json={"error": "invalid x-api-key sk-live-123"})]
        )
        client = AnthropicClient(
            model_config("anthropic", "claude-opus-4-1"),
            transport=transport,
            sleep=RecordingSleep(),
        )

        with pytest.raises(AIClientError) as exc_info:
            await client.chat(options())

        error = exc_info.value
        assert error.error_type == AIErrorType.AUTH_ERROR
        assert "sk-live" not in error.user_message

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_before_any_request(self):
        requests: List[httpx.Request] = []
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5", api_key=None),
            transport=scripted_transport([], requests),
        )

        with pytest.raises(MissingAPIKeyError) as exc_info:
            await client.chat(options())

        assert exc_info.value.error_type == AIErrorType.AUTH_ERROR
        assert exc_info.value.env_var == "OPENAI_API_KEY"
        assert requests == []

    def test_backoff_is_capped(self):
        wait = ExponentialJitterWait(
            RetryConfig(base_delay_seconds=1.0, max_delay_seconds=10.0, jitter_ratio=0.0)
        )
        assert [wait.delay_for(n) for n in (1, 2, 3, 4, 5, 6)] == [1, 2, 4, 8, 10, 10]


class TestRequestShapes:
    """Provider-specific request payloads."""

    @pytest.mark.asyncio
    async def test_openai_uses_max_completion_tokens(self):
        requests: List[httpx.Request] = []
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"),
            transport=scripted_transport([httpx.Response(200, json=OPENAI_OK)], requests),
        )

        await client.chat(options(system="Be brief.", max_tokens=500, temperature=0.2))

        payload = json.loads(requests[0].content)
        assert payload["max_completion_tokens"] == 500
        assert "max_tokens" not in payload
        assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
        assert requests[0].headers["authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_groq_without_tool_support_drops_tools(self):
        requests: List[httpx.Request] = []
        client = OpenAICompatibleClient(
            model_config("groq", "meta-llama/llama-4-scout-17b-16e-instruct"),
            supports_tools=False,
            transport=scripted_transport([httpx.Response(200, json=OPENAI_OK)], requests),
        )

        await client.chat(options(tools=[{"name": "lookup", "parameters": {}}]))

        payload = json.loads(requests[0].content)
        assert "tools" not in payload
        assert "max_tokens" in payload

    @pytest.mark.asyncio
    async def test_anthropic_folds_system_messages(self):
        requests: List[httpx.Request] = []
        body = {
            "model": "claude-opus-4-1",
            "content": [{"type": "text", "text": "ok"}],
            "usage": {"input_tokens": 10, "output_tokens": 2},
        }
        client = AnthropicClient(
            model_config("anthropic", "claude-opus-4-1"),
            transport=scripted_transport([httpx.Response(200, json=body)], requests),
        )

        await client.chat(ChatOptions(
            system="Primary.",
            messages=[
                {"role": "system", "content": "Secondary."},
                {"role": "user", "content": "hi"},
            ],
        ))

        payload = json.loads(requests[0].content)
        assert payload["system"] == "Primary.\n\nSecondary."
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        assert requests[0].url.path == "/v1/messages"
        assert requests[0].headers["x-api-key"] == "test-key"


class TestToolCalls:
    """Tool-call parsing and argument coercion."""

    def test_coerce_tool_arguments(self):
        args = {
            "include": "TRUE",
            "nested": {"flag": "false", "items": [{"ok": "True"}, "other"]},
            "amount": "1200",
        }
        assert coerce_tool_arguments(args) == {
            "include": True,
            "nested": {"flag": False, "items": [{"ok": True}, "other"]},
            "amount": "1200",
        }

    @pytest.mark.asyncio
    async def test_openai_tool_call_arguments_are_parsed(self):
        body = {
            "model": "gpt-5",
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [{
                        "id": "call_1",
                        "function": {
                            "name": "get_debts",
                            "arguments": '{"include_paid": "false"}',
                        },
                    }],
                },
            }],
            "usage": {"prompt_tokens": 5, "completion_tokens": 5},
        }
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"),
            transport=scripted_transport([httpx.Response(200, json=body)]),
        )

        response = await client.chat(options())

        assert response.text == ""
        assert response.tool_calls[0].name == "get_debts"
        assert response.tool_calls[0].arguments == {"include_paid": False}

    @pytest.mark.asyncio
    async def test_gemini_response_and_synthesized_ids(self):
        requests: List[httpx.Request] = []
        body = {
            "candidates": [{
                "content": {"parts": [
                    {"text": "Checking."},
                    {"functionCall": {"name": "get_goals", "args": {"active": "true"}}},
                ]},
            }],
            "usageMetadata": {"promptTokenCount": 40, "candidatesTokenCount": 8},
        }
        client = GeminiClient(
            model_config("gemini", "gemini-2.5-flash"),
            transport=scripted_transport([httpx.Response(200, json=body)], requests),
        )

        response = await client.chat(ChatOptions(
            system="Be brief.",
            messages=[
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
            ],
        ))

        assert response.text == "Checking."
        assert response.tokens_in == 40
        assert response.tokens_out == 8
        assert response.tool_calls[0].id.startswith("gemini_")
        assert response.tool_calls[0].arguments == {"active": True}

        payload = json.loads(requests[0].content)
        assert requests[0].url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in payload["contents"]] == ["user", "model"]


class TestStreaming:
    """chat_stream across providers."""

    @pytest.mark.asyncio
    async def test_openai_stream_with_usage_and_tool_call(self):
        requests: List[httpx.Request] = []
        transport = scripted_transport([
            sse(
                'data: {"model": "gpt-5", "choices": [{"delta": {"content": "Hello"}}]}',
                'data: {"choices": [{"delta": {"content": " there"}}]}',
                'data: {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_9", '
                '"function": {"name": "get_debts", "arguments": "{\\"all\\": "}}]}}]}',
                'data: {"choices": [{"delta": {"tool_calls": [{"index": 0, '
                '"function": {"arguments": "\\"true\\"}"}}]}}]}',
                'data: {"choices": [], "usage": {"prompt_tokens": 1000, "completion_tokens": 100}}',
                "data: [DONE]",
            )
        ], requests)
        client = OpenAICompatibleClient(model_config("openai", "gpt-5"), transport=transport)

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert [c.type for c in chunks] == ["text", "text", "tool_call", "done"]
        assert chunks[0].content + chunks[1].content == "Hello there"
        assert chunks[2].tool_call.id == "call_9"
        assert chunks[2].tool_call.arguments == {"all": True}
        done = chunks[-1]
        assert done.tokens_in == 1000
        assert done.tokens_out == 100
        assert done.cost == pytest.approx(estimate_cost("gpt-5", 1000, 100))
        assert json.loads(requests[0].content)["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_anthropic_stream(self):
        transport = scripted_transport([
            sse(
                'event: message_start\ndata: {"type": "message_start", "message": '
                '{"model": "claude-opus-4-1", "usage": {"input_tokens": 200, "output_tokens": 1}}}',
                'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 0, '
                '"delta": {"type": "text_delta", "text": "Build an emergency fund."}}',
                'event: content_block_start\ndata: {"type": "content_block_start", "index": 1, '
                '"content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_assets"}}',
                'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 1, '
                '"delta": {"type": "input_json_delta", "partial_json": "{\\"liquid\\": \\"FALSE\\"}"}}',
                'event: content_block_stop\ndata: {"type": "content_block_stop", "index": 1}',
                'event: message_delta\ndata: {"type": "message_delta", "usage": {"output_tokens": 42}}',
                'event: message_stop\ndata: {"type": "message_stop"}',
            )
        ])
        client = AnthropicClient(model_config("anthropic", "claude-opus-4-1"), transport=transport)

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert [c.type for c in chunks] == ["text", "tool_call", "done"]
        assert chunks[1].tool_call.arguments == {"liquid": False}
        assert chunks[-1].tokens_in == 200
        assert chunks[-1].tokens_out == 42
        assert chunks[-1].model == "claude-opus-4-1"

    @pytest.mark.asyncio
    async def test_stream_retries_before_first_chunk(self):
        sleep = RecordingSleep()
        transport = scripted_transport([
            httpx.Response(502, text="bad gateway"),
            sse('data: {"choices": [{"delta": {"content": "ok"}}]}', "data: [DONE]"),
        ])
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"), transport=transport, sleep=sleep
        )

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert [c.type for c in chunks] == ["text", "done"]
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_stream_error_after_output_is_not_retried(self):
        sleep = RecordingSleep()
        requests: List[httpx.Request] = []
        transport = scripted_transport([
            sse(
                'data: {"choices": [{"delta": {"content": "partial"}}]}',
                'data: {"error": {"message": "upstream reset"}}',
            ),
        ], requests)
        client = OpenAICompatibleClient(
            model_config("openai", "gpt-5"), transport=transport, sleep=sleep
        )

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert [c.type for c in chunks] == ["text", "error"]
        assert chunks[-1].error_type == AIErrorType.PROVIDER_ERROR.value
        assert len(requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_stream_missing_key_yields_error_chunk(self):
        client = GeminiClient(model_config("gemini", "gemini-2.5-flash", api_key=""))

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert len(chunks) == 1
        assert chunks[0].type == "error"
        assert chunks[0].error_type == AIErrorType.AUTH_ERROR.value

    @pytest.mark.asyncio
    async def test_gemini_stream_uses_sse_endpoint(self):
        requests: List[httpx.Request] = []
        transport = scripted_transport([
            sse(
                'data: {"candidates": [{"content": {"parts": [{"text": "Save "}]}}]}',
                'data: {"candidates": [{"content": {"parts": [{"text": "more."}]}}], '
                '"usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 3}}',
            )
        ], requests)
        client = GeminiClient(model_config("gemini", "gemini-2.5-flash"), transport=transport)

        chunks = [chunk async for chunk in client.chat_stream(options())]

        assert "".join(c.content for c in chunks if c.type == "text") == "Save more."
        assert chunks[-1].type == "done"
        assert chunks[-1].tokens_in == 12
        assert requests[0].url.params["alt"] == "sse"
