"""
OpenAI-compatible /chat/completions backend (Groq for the fast model,
OpenAI for the math model).
"""
import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from advisor.core.errors import ProviderResponseError
from advisor.models.responses import AIResponse, StreamChunk, ToolCall
from advisor.services.ai.clients.base import (
    BaseModelClient,
    ChatOptions,
    StreamEvent,
    StreamState,
    parse_tool_arguments,
)


def to_openai_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Wrap neutral tool definitions in the OpenAI function-tool envelope."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("parameters", {"type": "object", "properties": {}}),
            },
        }
        for tool in tools
    ]


class OpenAICompatibleClient(BaseModelClient):
    provider = "openai"

    def __init__(self, *args: Any, supports_tools: bool = True, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.provider = self.config.provider
        self.supports_tools = supports_tools

    def build_request(
        self, options: ChatOptions, stream: bool
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        max_tokens, temperature = self._effective(options)
        messages: List[Dict[str, str]] = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.extend(options.messages)

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }
        # OpenAI's newer models only accept max_completion_tokens
        if self.config.provider == "openai":
            payload["max_completion_tokens"] = max_tokens
        else:
            payload["max_tokens"] = max_tokens

        tools = self._tools_for(options)
        if tools:
            payload["tools"] = to_openai_tools(tools)
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        return f"{self.api_base}/chat/completions", headers, payload

    def parse_response(self, data: Dict[str, Any]) -> AIResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderResponseError("response has no choices")
        message = choices[0].get("message") or {}

        tool_calls: Optional[List[ToolCall]] = None
        raw_calls = message.get("tool_calls") or []
        if raw_calls:
            tool_calls = [
                ToolCall(
                    id=call.get("id") or f"call_{i}",
                    name=(call.get("function") or {}).get("name", ""),
                    arguments=parse_tool_arguments((call.get("function") or {}).get("arguments")),
                )
                for i, call in enumerate(raw_calls)
            ]

        usage = data.get("usage") or {}
        return AIResponse(
            text=message.get("content") or "",
            tokens_in=int(usage.get("prompt_tokens") or 0),
            tokens_out=int(usage.get("completion_tokens") or 0),
            model=data.get("model") or self.model,
            tool_calls=tool_calls,
        )

    def parse_stream_event(
        self, event: StreamEvent, state: StreamState
    ) -> Iterable[StreamChunk]:
        if event.data.strip() == "[DONE]":
            state.finished = True
            return []
        try:
            data = json.loads(event.data)
        except json.JSONDecodeError as exc:
            raise ProviderResponseError("malformed stream event") from exc

        if data.get("error"):
            raise ProviderResponseError(str(data["error"]))

        state.model = data.get("model") or state.model
        usage = data.get("usage")
        if usage:
            state.tokens_in = int(usage.get("prompt_tokens") or 0)
            state.tokens_out = int(usage.get("completion_tokens") or 0)

        chunks: List[StreamChunk] = []
        for choice in data.get("choices") or []:
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                chunks.append(StreamChunk(type="text", content=content))
            for call in delta.get("tool_calls") or []:
                pending = state.pending_tools.setdefault(
                    int(call.get("index", 0)), {"id": None, "name": "", "arguments": ""}
                )
                if call.get("id"):
                    pending["id"] = call["id"]
                function = call.get("function") or {}
                if function.get("name"):
                    pending["name"] = function["name"]
                pending["arguments"] += function.get("arguments") or ""
        return chunks

    def finalize_stream(self, state: StreamState) -> Iterable[StreamChunk]:
        return [
            StreamChunk(
                type="tool_call",
                tool_call=ToolCall(
                    id=pending["id"] or f"call_{index}",
                    name=pending["name"],
                    arguments=parse_tool_arguments(pending["arguments"]),
                ),
            )
            for index, pending in sorted(state.pending_tools.items())
        ]
