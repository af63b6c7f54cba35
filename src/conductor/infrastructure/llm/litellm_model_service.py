"""
LiteLLM model service.

Implements ModelServiceProtocol on top of litellm.acompletion:

- classify(): non-streaming JSON completion choosing one candidate agent
- generate_turn(): streaming completion with tool schemas, converted into
  ContentEvent / ToolCallRequestEvent / FinishedEvent / ErrorEvent

Model aliases, default parameters and the retry policy come from
LLMSettings.
"""

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator, Sequence
from typing import Any

import litellm
import structlog

from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.events import (
    ContentEvent,
    ErrorEvent,
    FinishedEvent,
    ToolCallRequestEvent,
    TurnEvent,
)
from conductor.core.domain.routing import RouteDecision, RoutingStrategy
from conductor.infrastructure.llm.config import LLMSettings

CLASSIFY_PROMPT = """You route user requests to the most suitable specialist agent.

Available agents:
{agents}

Answer with a JSON object: {{"agent": "<agent name>", "reasoning": "<one sentence>"}}.
Use "none" as agent when no agent fits."""


class LiteLLMModelService:
    """
    Model service backed by LiteLLM.

    Args:
        settings: Model aliases, parameters and retry policy
    """

    def __init__(self, settings: LLMSettings | None = None):
        self.settings = settings or LLMSettings()
        self.logger = structlog.get_logger().bind(component="llm_service")

    async def _acompletion(self, model: str, messages: list[dict[str, Any]], **params: Any) -> Any:
        """Call litellm with the configured retry policy."""
        retry = self.settings.retry
        for attempt in range(retry.max_attempts):
            try:
                start_time = time.time()
                self.logger.info(
                    "llm_completion_started",
                    model=model,
                    attempt=attempt + 1,
                    message_count=len(messages),
                )
                response = await litellm.acompletion(
                    model=model, messages=messages, timeout=retry.timeout, **params
                )
                self.logger.info(
                    "llm_completion_success",
                    model=model,
                    latency_ms=int((time.time() - start_time) * 1000),
                )
                return response
            except Exception as e:
                error_type = type(e).__name__
                error_msg = str(e)
                should_retry = attempt < retry.max_attempts - 1 and any(
                    err in error_type or err in error_msg for err in retry.retry_on_errors
                )
                if not should_retry:
                    self.logger.error(
                        "llm_completion_failed",
                        model=model,
                        error_type=error_type,
                        error=error_msg[:200],
                        attempts=attempt + 1,
                    )
                    raise
                backoff_time = retry.backoff_multiplier**attempt
                self.logger.warning(
                    "llm_completion_retry",
                    model=model,
                    error_type=error_type,
                    attempt=attempt + 1,
                    backoff_seconds=backoff_time,
                )
                await asyncio.sleep(backoff_time)
        raise RuntimeError("Max retries exceeded")

    async def classify(
        self, text: str, agents: Sequence[AgentDefinition]
    ) -> RouteDecision | None:
        agent_lines = "\n".join(
            f"- {agent.name}: {agent.description or agent.display_name}" for agent in agents
        )
        messages = [
            {"role": "system", "content": CLASSIFY_PROMPT.format(agents=agent_lines)},
            {"role": "user", "content": text},
        ]
        response = await self._acompletion(
            self.settings.resolve(self.settings.routing_model),
            messages,
            response_format={"type": "json_object"},
            **self.settings.default_params,
        )
        content = response.choices[0].message.content or ""
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            self.logger.warning("llm_classify_invalid_json", content=content[:200])
            return None

        agent = str(data.get("agent") or "").strip()
        if not agent or agent.lower() == "none":
            return None
        return RouteDecision(
            agent=agent,
            confidence=100,
            strategy=RoutingStrategy.LLM,
            reasoning=str(data.get("reasoning", "")),
        )

    async def generate_turn(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[TurnEvent]:
        params: dict[str, Any] = dict(self.settings.default_params)
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        try:
            stream = await self._acompletion(
                self.settings.resolve(None), messages, stream=True, **params
            )
        except Exception as e:
            yield ErrorEvent(message=str(e))
            return

        # Tool call fragments arrive spread over many chunks, keyed by index
        pending: dict[int, dict[str, Any]] = {}
        finish_reason = "stop"
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if getattr(delta, "content", None):
                    yield ContentEvent(text=delta.content)
                for tool_delta in getattr(delta, "tool_calls", None) or []:
                    entry = pending.setdefault(
                        tool_delta.index or 0, {"id": None, "name": "", "arguments": ""}
                    )
                    if tool_delta.id:
                        entry["id"] = tool_delta.id
                    function = tool_delta.function
                    if function is not None:
                        if function.name:
                            entry["name"] += function.name
                        if function.arguments:
                            entry["arguments"] += function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except Exception as e:
            self.logger.error("llm_stream_failed", error=str(e), error_type=type(e).__name__)
            yield ErrorEvent(message=str(e))
            return

        for index in sorted(pending):
            entry = pending[index]
            try:
                args = json.loads(entry["arguments"]) if entry["arguments"] else {}
            except json.JSONDecodeError:
                self.logger.warning(
                    "llm_tool_arguments_invalid", tool=entry["name"], arguments=entry["arguments"][:200]
                )
                args = {}
            yield ToolCallRequestEvent(
                call_id=entry["id"] or f"call_{uuid.uuid4().hex[:12]}",
                name=entry["name"],
                args=args if isinstance(args, dict) else {},
            )
        yield FinishedEvent(reason=finish_reason)
