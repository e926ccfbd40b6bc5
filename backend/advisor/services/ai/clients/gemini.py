"""
Google Gemini generateContent backend, selectable as the fast model.

Gemini has no tool-call ids, so ids are synthesized as gemini_<ms>_<index>.
"""
import json
import time
from typing import Any, Dict, Iterable, List, Tuple

from advisor.core.errors import ProviderResponseError
from advisor.models.responses import AIResponse, StreamChunk, ToolCall
from advisor.services.ai.clients.base import (
    BaseModelClient,
    ChatOptions,
    StreamEvent,
    StreamState,
    coerce_tool_arguments,
)


def to_gemini_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{
        "functionDeclarations": [
            {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("parameters", {"type": "object", "properties": {}}),
            }
            for tool in tools
        ]
    }]


def _tool_call_id(index: int) -> str:
    return f"gemini_{int(time.time() * 1000)}_{index}"


class GeminiClient(BaseModelClient):
    provider = "gemini"

    def build_request(
        self, options: ChatOptions, stream: bool
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        max_tokens, temperature = self._effective(options)

        system_parts: List[str] = [options.system] if options.system else []
        contents: List[Dict[str, Any]] = []
        for message in options.messages:
            role = message.get("role")
            if role == "system":
                system_parts.append(message.get("content", ""))
                continue
            contents.append({
                "role": "model" if role == "assistant" else "user",
                "parts": [{"text": message.get("content", "")}],
            })

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        tools = self._tools_for(options)
        if tools:
            payload["tools"] = to_gemini_tools(tools)

        if stream:
            url = f"{self.api_base}/models/{self.model}:streamGenerateContent?alt=sse"
        else:
            url = f"{self.api_base}/models/{self.model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.config.api_key or "",
        }
        return url, headers, payload

    def _parts(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    def _read_usage(self, data: Dict[str, Any], state: StreamState) -> None:
        usage = data.get("usageMetadata") or {}
        if usage:
            state.tokens_in = int(usage.get("promptTokenCount") or 0)
            state.tokens_out = int(usage.get("candidatesTokenCount") or 0)

    def parse_response(self, data: Dict[str, Any]) -> AIResponse:
        if data.get("error"):
            raise ProviderResponseError(str(data["error"]))
        if not data.get("candidates"):
            raise ProviderResponseError("response has no candidates")

        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in self._parts(data):
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(
                    ToolCall(
                        id=_tool_call_id(len(tool_calls)),
                        name=call.get("name", ""),
                        arguments=coerce_tool_arguments(call.get("args") or {}),
                    )
                )

        state = StreamState()
        self._read_usage(data, state)
        return AIResponse(
            text="".join(texts),
            tokens_in=state.tokens_in,
            tokens_out=state.tokens_out,
            model=data.get("modelVersion") or self.model,
            tool_calls=tool_calls or None,
        )

    def parse_stream_event(
        self, event: StreamEvent, state: StreamState
    ) -> Iterable[StreamChunk]:
        try:
            data = json.loads(event.data)
        except json.JSONDecodeError as exc:
            raise ProviderResponseError("malformed stream event") from exc
        if data.get("error"):
            raise ProviderResponseError(str(data["error"]))

        self._read_usage(data, state)
        state.model = data.get("modelVersion") or state.model

        chunks: List[StreamChunk] = []
        for part in self._parts(data):
            if part.get("text"):
                chunks.append(StreamChunk(type="text", content=part["text"]))
            elif "functionCall" in part:
                call = part["functionCall"]
                index = len(state.pending_tools)
                state.pending_tools[index] = {"name": call.get("name", "")}
                chunks.append(
                    StreamChunk(
                        type="tool_call",
                        tool_call=ToolCall(
                            id=_tool_call_id(index),
                            name=call.get("name", ""),
                            arguments=coerce_tool_arguments(call.get("args") or {}),
                        ),
                    )
                )
        return chunks
