"""
Uniform response models shared by every model backend and advice path.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from advisor.models.subscription import ModelAccess


class ToolCall(BaseModel):
    """A function call requested by the model, with coerced arguments."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class AIResponse(BaseModel):
    """Normalized result of a non-streaming backend call."""

    text: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    model: str
    tool_calls: Optional[List[ToolCall]] = None


class StreamChunk(BaseModel):
    """
    One element of a streamed response.

    A stream yields text/tool_call chunks in arrival order and ends with
    exactly one terminal chunk: done (with tokens_in, tokens_out, cost,
    model) or error (with error and error_type).
    """

    type: Literal["text", "tool_call", "done", "error"]
    content: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    cost: Optional[float] = None
    model: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")


class HybridAdviceResponse(BaseModel):
    """The single response contract returned for every advice path."""

    answer: str
    model_used: ModelAccess
    model_slug: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    escalated: bool = False
    escalation_reason: Optional[str] = None
    orchestrator_used: Optional[str] = None
    structured_data: Optional[Dict[str, Any]] = None
    tool_calls: Optional[List[ToolCall]] = None
    tier_downgraded: bool = False
