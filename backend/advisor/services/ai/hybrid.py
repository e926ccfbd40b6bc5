"""
Hybrid advice service.

Routes a question either to the fast model (generic chat) or to a more
capable model, where a domain orchestrator produces structured analysis when
one applies. Every path returns the same HybridAdviceResponse shape.

Two modes:
- Normal: build the context, run the complexity router, pick fast or top.
- Override: a caller that already chose the model (the tier router) passes
  force_model and the pre-built context; the router decision is not re-run.
"""
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from advisor.core.errors import (
    AIClientError,
    ConfigurationError,
    OrchestratorNotApplicableError,
)
from advisor.core.logging import get_logger
from advisor.core.metrics import record_advice_request, record_routing_decision
from advisor.core.tracing import get_tracer, record_exception, set_span_attribute
from advisor.models.context import FinancialContext
from advisor.models.responses import AIResponse, HybridAdviceResponse, StreamChunk
from advisor.models.subscription import ModelAccess
from advisor.services.ai.clients.base import BaseModelClient, ChatOptions
from advisor.services.ai.context_builder import (
    build_financial_context,
    estimate_context_tokens,
)
from advisor.services.ai.orchestrators import (
    BaseOrchestrator,
    build_orchestrators,
    detect_orchestrator,
)
from advisor.services.ai.orchestrators.base import money
from advisor.services.ai.router import (
    ComplexitySignals,
    RouteDecision,
    get_routing_reason,
    should_escalate,
)
from advisor.services.ai.schema import SchemaValidationError
from advisor.services.ai.tools import ADVISOR_TOOLS
from advisor.storage.base import AdvisorStorage

logger = get_logger(__name__)

MAX_HISTORY_TURNS = 10

FAST_TEMPERATURE = 0.7
FAST_MAX_TOKENS = 1000
REASONING_TEMPERATURE = 0.5
REASONING_MAX_TOKENS = 2000

PATH_FAST = "fast"
PATH_REASONING = "reasoning"
PATH_ORCHESTRATOR = "orchestrator"


class GenerateAdviceOptions(BaseModel):
    """Caller overrides for generate_advice / stream_advice."""

    force_model: Optional[ModelAccess] = None
    preselected_context: Optional[FinancialContext] = None
    skip_auto_escalation: bool = False
    conversation_history: List[Dict[str, str]] = Field(default_factory=list)


class _Selection(BaseModel):
    """Which model serves the request and how it is labeled."""

    model_config = ConfigDict(frozen=True)

    model: ModelAccess
    escalated: bool
    reason: Optional[str] = None


def describe_selection(
    model: ModelAccess, signals: ComplexitySignals
) -> Tuple[bool, Optional[str]]:
    """(escalated, reason) for a model chosen outside the complexity router."""
    if model == ModelAccess.FAST:
        return False, None
    if should_escalate(signals):
        return True, get_routing_reason(signals)
    return True, f"Selected {model.value} model for this query"


def recent_history(history: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
    """Last MAX_HISTORY_TURNS user/assistant turns with string content."""
    turns = [
        {"role": turn["role"], "content": turn["content"]}
        for turn in history or []
        if turn.get("role") in ("user", "assistant") and isinstance(turn.get("content"), str)
    ]
    return turns[-MAX_HISTORY_TURNS:]


def build_fast_system_prompt(context: FinancialContext) -> str:
    return (
        "You are a helpful CFO-level financial advisor. You provide clear, actionable advice.\n"
        "\n"
        "**User Financial Snapshot:**\n"
        f"- Monthly Income: {money(context.gross_monthly_income)}\n"
        f"- Monthly Expenses: {money(context.expenses.monthly)}\n"
        f"- Total Debts: {money(context.total_debt)}\n"
        f"- Total Assets: {money(context.total_assets)}\n"
        "\n"
        "Keep responses concise and actionable. If the query is complex, "
        "recommend they ask for deeper analysis."
    )


def build_reasoning_system_prompt(context: FinancialContext) -> str:
    lines = [
        "You are a CFO-level financial advisor providing comprehensive analysis.",
        "",
        "**User Financial Context:**",
        f"- Monthly Income: {money(context.gross_monthly_income)}",
        f"- Monthly Expenses: {money(context.expenses.monthly)}",
        f"- Monthly Surplus: {money(context.income.monthly_net)}",
        "",
    ]
    if context.debts:
        lines.append("**Debts:**")
        for i, debt in enumerate(context.debts, start=1):
            lines.append(f"{i}. {debt.name}: {money(debt.balance)} @ {debt.apr:g}% APR")
        lines.append("")
    if context.assets:
        lines.append("**Assets:**")
        for i, asset in enumerate(context.assets, start=1):
            lines.append(f"{i}. {asset.name} ({asset.type.value}): {money(asset.value)}")
        lines.append("")
    if context.goals:
        lines.append("**Goals:**")
        for goal in context.goals:
            lines.append(
                f"- {goal.name}: {money(goal.target)} in {goal.horizon_months // 12} years"
            )
        lines.append("")
    lines.append(
        "Provide comprehensive, CFO-level analysis with specific numbers and "
        "actionable recommendations."
    )
    return "\n".join(lines)


class HybridAdviceService:
    """Fast/top routing plus orchestrator dispatch over injected model clients."""

    def __init__(
        self,
        clients: Dict[ModelAccess, BaseModelClient],
        top_model: ModelAccess = ModelAccess.CFO,
        orchestrators: Optional[Dict[str, BaseOrchestrator]] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        context_fetch_timeout_seconds: float = 5.0,
    ):
        self.clients = clients
        self.top_model = top_model
        self.orchestrators = orchestrators if orchestrators is not None else build_orchestrators()
        self.tools = tools if tools is not None else ADVISOR_TOOLS
        self.context_fetch_timeout_seconds = context_fetch_timeout_seconds

    def _client_for(self, model: ModelAccess) -> BaseModelClient:
        client = self.clients.get(model)
        if client is None:
            raise ConfigurationError(
                f"No client configured for model '{model.value}'",
                config_key=model.value,
            )
        return client

    async def _prepare(
        self,
        user_id: str,
        message: str,
        storage: AdvisorStorage,
        options: GenerateAdviceOptions,
    ) -> Tuple[FinancialContext, _Selection]:
        context = options.preselected_context
        if context is None:
            context = await build_financial_context(
                user_id,
                storage,
                fetch_timeout_seconds=self.context_fetch_timeout_seconds,
            )
        signals = ComplexitySignals.from_context(
            message, context, estimate_context_tokens(context)
        )
        return context, self._select(signals, options)

    def _select(
        self, signals: ComplexitySignals, options: GenerateAdviceOptions
    ) -> _Selection:
        if options.force_model is not None:
            escalated, reason = describe_selection(options.force_model, signals)
            return _Selection(model=options.force_model, escalated=escalated, reason=reason)

        if not options.skip_auto_escalation and should_escalate(signals):
            record_routing_decision(RouteDecision.TOP.value)
            return _Selection(
                model=self.top_model,
                escalated=True,
                reason=get_routing_reason(signals),
            )
        record_routing_decision(RouteDecision.FAST.value)
        return _Selection(model=ModelAccess.FAST, escalated=False)

    def _chat_options(
        self,
        selection: _Selection,
        context: FinancialContext,
        message: str,
        history: List[Dict[str, str]],
    ) -> ChatOptions:
        messages = history + [{"role": "user", "content": message}]
        if selection.model == ModelAccess.FAST:
            return ChatOptions(
                system=build_fast_system_prompt(context),
                messages=messages,
                temperature=FAST_TEMPERATURE,
                max_tokens=FAST_MAX_TOKENS,
            )
        return ChatOptions(
            system=build_reasoning_system_prompt(context),
            messages=messages,
            tools=self.tools or None,
            temperature=REASONING_TEMPERATURE,
            max_tokens=REASONING_MAX_TOKENS,
        )

    def _to_response(
        self,
        selection: _Selection,
        response: AIResponse,
        orchestrator_used: Optional[str] = None,
        structured_data: Optional[Dict[str, Any]] = None,
        answer: Optional[str] = None,
    ) -> HybridAdviceResponse:
        return HybridAdviceResponse(
            answer=answer if answer is not None else response.text,
            model_used=selection.model,
            model_slug=response.model,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost=response.cost,
            escalated=selection.escalated,
            escalation_reason=selection.reason,
            orchestrator_used=orchestrator_used,
            structured_data=structured_data,
            tool_calls=response.tool_calls,
        )

    async def _run_orchestrator(
        self,
        name: str,
        selection: _Selection,
        context: FinancialContext,
        message: str,
    ) -> Optional[HybridAdviceResponse]:
        """Structured answer, or None when the generic path should take over."""
        orchestrator = self.orchestrators.get(name)
        if orchestrator is None:
            return None
        try:
            result = await orchestrator.run(self._client_for(selection.model), context, message)
        except (SchemaValidationError, AIClientError, OrchestratorNotApplicableError) as exc:
            logger.warning(
                "orchestrator_fallback",
                orchestrator=name,
                model=selection.model.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return self._to_response(
            selection,
            result.response,
            orchestrator_used=name,
            structured_data=result.structured_data,
            answer=result.analysis.summary,
        )

    async def generate_advice(
        self,
        user_id: str,
        message: str,
        storage: AdvisorStorage,
        options: Optional[GenerateAdviceOptions] = None,
    ) -> HybridAdviceResponse:
        """
        Answer a financial question.

        Raises:
            AIClientError: the serving backend failed after retries
        """
        options = options or GenerateAdviceOptions()
        message = message if isinstance(message, str) else ""

        tracer = get_tracer()
        with tracer.start_as_current_span("advice.generate", record_exception=False) as span:
            set_span_attribute(span, "user_id", user_id)
            set_span_attribute(span, "override", options.force_model is not None)
            try:
                context, selection = await self._prepare(user_id, message, storage, options)
                set_span_attribute(span, "model", selection.model.value)
                set_span_attribute(span, "escalated", selection.escalated)

                result: Optional[HybridAdviceResponse] = None
                path = PATH_FAST
                if selection.model != ModelAccess.FAST:
                    name = detect_orchestrator(message, context)
                    if name is not None:
                        result = await self._run_orchestrator(name, selection, context, message)
                    path = PATH_ORCHESTRATOR if result is not None else PATH_REASONING

                if result is None:
                    chat_options = self._chat_options(
                        selection, context, message, recent_history(options.conversation_history)
                    )
                    response = await self._client_for(selection.model).chat(chat_options)
                    result = self._to_response(selection, response)
            except Exception as exc:
                record_exception(span, exc)
                raise

            set_span_attribute(span, "path", path)
            record_advice_request(selection.model.value, selection.escalated, path)
            logger.info(
                "advice_generated",
                model=selection.model.value,
                model_slug=result.model_slug,
                path=path,
                escalated=selection.escalated,
                escalation_reason=selection.reason,
                orchestrator=result.orchestrator_used,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                cost_usd=result.cost,
            )
            return result

    async def stream_advice(
        self,
        user_id: str,
        message: str,
        storage: AdvisorStorage,
        options: Optional[GenerateAdviceOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a generic chat answer on the selected model.

        Orchestrators are not used when streaming. The stream always ends
        with a done or error chunk.
        """
        options = options or GenerateAdviceOptions()
        message = message if isinstance(message, str) else ""

        context, selection = await self._prepare(user_id, message, storage, options)
        path = PATH_FAST if selection.model == ModelAccess.FAST else PATH_REASONING
        chat_options = self._chat_options(
            selection, context, message, recent_history(options.conversation_history)
        )
        logger.info(
            "advice_stream_started",
            model=selection.model.value,
            escalated=selection.escalated,
            escalation_reason=selection.reason,
        )

        client = self._client_for(selection.model)
        async with aclosing(client.chat_stream(chat_options)) as stream:
            async for chunk in stream:
                if chunk.type == "done":
                    record_advice_request(selection.model.value, selection.escalated, path)
                yield chunk
                if chunk.is_terminal:
                    break
