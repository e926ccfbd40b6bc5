"""
Shared machinery for domain orchestrators.

An orchestrator turns a FinancialContext into a domain prompt, asks the
top-tier model for a JSON analysis, and validates it against a strict schema.
Parsing is a fallible step: any extraction, JSON or schema failure raises
SchemaValidationError and the caller falls back to a generic answer. There is
no re-prompting.
"""
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from advisor.core.errors import AIClientError
from advisor.core.logging import get_logger
from advisor.core.metrics import record_orchestrator_run
from advisor.core.tracing import get_tracer, set_span_attribute
from advisor.models.context import AssetType, FinancialContext
from advisor.models.responses import AIResponse
from advisor.services.ai.clients.base import BaseModelClient, ChatOptions
from advisor.services.ai.schema import (
    AnalysisModel,
    SchemaValidationError,
    analysis_to_dict,
    validate_analysis_payload,
)

logger = get_logger(__name__)

AnalysisT = TypeVar("AnalysisT", bound=AnalysisModel)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)

JSON_ONLY_INSTRUCTION = (
    "Return ONLY the JSON object specified in the system prompt, no additional text."
)


def _first_balanced_object(text: str) -> Optional[str]:
    """First top-level {...} span, ignoring braces inside string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def extract_json(text: str) -> Optional[str]:
    """
    Locate the JSON payload in a model answer.

    Prefers the first fenced code block that contains an object, else the
    first brace-balanced top-level object in the text.
    """
    if not text:
        return None
    for match in _FENCED_BLOCK.finditer(text):
        candidate = _first_balanced_object(match.group(1))
        if candidate is not None:
            return candidate
    return _first_balanced_object(text)


def parse_analysis(agent: str, schema: Type[AnalysisT], text: str) -> AnalysisT:
    """
    Extract, decode and validate an analysis from raw model text.

    Raises:
        SchemaValidationError on any failure.
    """
    snippet = extract_json(text)
    if snippet is None:
        raise SchemaValidationError(
            agent=agent,
            message=f"No JSON object found in {agent} output",
            raw_output=text[:500],
        )
    try:
        payload = json.loads(snippet)
    except json.JSONDecodeError as exc:
        raise SchemaValidationError(
            agent=agent,
            message=f"{agent} output is not valid JSON: {exc.msg}",
            raw_output=snippet[:500],
        ) from exc
    return validate_analysis_payload(agent, schema, payload, raw_output=snippet[:500])


class OrchestratorResult(BaseModel, Generic[AnalysisT]):
    """Validated analysis plus the backend response that produced it."""

    name: str
    analysis: AnalysisT
    response: AIResponse

    @property
    def structured_data(self) -> Dict[str, Any]:
        return analysis_to_dict(self.analysis)


def money(value: float) -> str:
    """$1,234.50 style; whole amounts drop the cents."""
    text = f"{abs(value):,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    return f"-${text}" if value < 0 else f"${text}"


def percent(part: float, whole: float) -> str:
    return f"{(part / whole) * 100:.1f}%" if whole > 0 else "0.0%"


def cash_savings(context: FinancialContext) -> float:
    return sum(a.value for a in context.assets if a.type == AssetType.CASH)


class BaseOrchestrator(ABC, Generic[AnalysisT]):
    """Template for a domain orchestrator."""

    name: str = "base"
    schema: Type[AnalysisT]
    system_prompt: str = ""
    temperature: float = 0.3
    max_tokens: int = 2000

    def check_applicable(self, context: FinancialContext) -> None:
        """Raise OrchestratorNotApplicableError when the context lacks required data."""

    @abstractmethod
    def build_prompt(self, context: FinancialContext, question: str) -> str:
        """User prompt with the computed metrics for this domain."""

    async def run(
        self,
        client: BaseModelClient,
        context: FinancialContext,
        question: str,
    ) -> OrchestratorResult[AnalysisT]:
        """
        Produce a validated analysis.

        Raises:
            OrchestratorNotApplicableError: context lacks the required data
            AIClientError: backend call failed after retries
            SchemaValidationError: answer could not be parsed or validated
        """
        self.check_applicable(context)

        tracer = get_tracer()
        with tracer.start_as_current_span("orchestrator.run") as span:
            set_span_attribute(span, "orchestrator", self.name)
            options = ChatOptions(
                system=self.system_prompt,
                messages=[{"role": "user", "content": self.build_prompt(context, question)}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            try:
                response = await client.chat(options)
            except AIClientError:
                record_orchestrator_run(self.name, "client_error")
                raise

            try:
                analysis = parse_analysis(self.name, self.schema, response.text)
            except SchemaValidationError as exc:
                record_orchestrator_run(self.name, "schema_invalid")
                logger.warning(
                    "schema_validation_failed",
                    orchestrator=self.name,
                    model=response.model,
                    error=str(exc),
                    raw_output=exc.raw_output,
                )
                raise

            record_orchestrator_run(self.name, "success")
            logger.info(
                "orchestrator_completed",
                orchestrator=self.name,
                model=response.model,
                tokens_in=response.tokens_in,
                tokens_out=response.tokens_out,
            )
            return OrchestratorResult(name=self.name, analysis=analysis, response=response)
