"""
Anthropic Messages API backend (reasoning and cfo models).

The system prompt travels in its own field; system-role messages are folded
into it. Tool definitions use input_schema.
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

ANTHROPIC_VERSION = "2023-06-01"


def to_anthropic_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "input_schema": tool.get("parameters", {"type": "object", "properties": {}}),
        }
        for tool in tools
    ]


class AnthropicClient(BaseModelClient):
    provider = "anthropic"

    def build_request(
        self, options: ChatOptions, stream: bool
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        max_tokens, temperature = self._effective(options)

        system_parts: List[str] = [options.system] if options.system else []
        messages: List[Dict[str, str]] = []
        for message in options.messages:
            if message.get("role") == "system":
                system_parts.append(message.get("content", ""))
            else:
                messages.append({"role": message["role"], "content": message.get("content", "")})

        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        tools = self._tools_for(options)
        if tools:
            payload["tools"] = to_anthropic_tools(tools)
        if stream:
            payload["stream"] = True

        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        return f"{self.api_base}/v1/messages", headers, payload

    def parse_response(self, data: Dict[str, Any]) -> AIResponse:
        if data.get("type") == "error":
            raise ProviderResponseError(str(data.get("error")))

        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        arguments=parse_tool_arguments(block.get("input")),
                    )
                )

        usage = data.get("usage") or {}
        return AIResponse(
            text="".join(texts),
            tokens_in=int(usage.get("input_tokens") or 0),
            tokens_out=int(usage.get("output_tokens") or 0),
            model=data.get("model") or self.model,
            tool_calls=tool_calls or None,
        )

    def parse_stream_event(
        self, event: StreamEvent, state: StreamState
    ) -> Iterable[StreamChunk]:
        try:
            data = json.loads(event.data)
        except json.JSONDecodeError as exc:
            raise ProviderResponseError("malformed stream event") from exc

        kind = data.get("type") or event.event
        if kind == "error":
            raise ProviderResponseError(str(data.get("error")))

        if kind == "message_start":
            message = data.get("message") or {}
            state.model = message.get("model") or state.model
            usage = message.get("usage") or {}
            state.tokens_in = int(usage.get("input_tokens") or 0)
            state.tokens_out = int(usage.get("output_tokens") or 0)
            return []

        if kind == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.pending_tools[int(data.get("index", 0))] = {
                    "id": block.get("id", ""),
                    "name": block.get("name", ""),
                    "arguments": "",
                }
            return []

        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return [StreamChunk(type="text", content=delta["text"])]
            if delta.get("type") == "input_json_delta":
                pending = state.pending_tools.get(int(data.get("index", 0)))
                if pending is not None:
                    pending["arguments"] += delta.get("partial_json", "")
            return []

        if kind == "content_block_stop":
            pending = state.pending_tools.pop(int(data.get("index", 0)), None)
            if pending is None:
                return []
            return [
                StreamChunk(
                    type="tool_call",
                    tool_call=ToolCall(
                        id=pending["id"],
                        name=pending["name"],
                        arguments=parse_tool_arguments(pending["arguments"]),
                    ),
                )
            ]

        if kind == "message_delta":
            usage: Optional[Dict[str, Any]] = data.get("usage")
            if usage and usage.get("output_tokens") is not None:
                state.tokens_out = int(usage["output_tokens"])
            return []

        if kind == "message_stop":
            state.finished = True
        return []
