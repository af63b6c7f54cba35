"""Fakes for the orchestration core collaborators."""

import asyncio
from collections.abc import Callable
from typing import Any

from conductor.core.domain.agents import AgentDefinition, AgentTriggers, HandoffRule
from conductor.core.domain.events import ContentEvent, FinishedEvent, ToolCallRequestEvent
from conductor.core.domain.tool_calls import ToolCall
from conductor.core.interfaces.runner import AgentRunResult


class FakeModelService:
    """
    Scripted model service.

    Every generate_turn() call consumes the next script entry (a list of
    TurnEvents); when the script runs out the model answers "done".
    """

    def __init__(self, turns: list[list[Any]] | None = None, decision: Any = None):
        self.turns = list(turns or [])
        self.decision = decision
        self.classify_calls: list[str] = []
        self.seen_messages: list[list[dict[str, Any]]] = []
        self.seen_tools: list[list[dict[str, Any]]] = []
        self.classify_error: Exception | None = None

    async def classify(self, text, agents):
        self.classify_calls.append(text)
        if self.classify_error is not None:
            raise self.classify_error
        return self.decision

    async def generate_turn(self, messages, tools):
        self.seen_messages.append(list(messages))
        self.seen_tools.append(list(tools))
        events = self.turns.pop(0) if self.turns else [ContentEvent("done"), FinishedEvent()]
        for event in events:
            yield event


class FakeToolExecutor:
    """Tool executor with configurable results, approval needs and gates."""

    def __init__(self, approval: set[str] | None = None):
        self.results: dict[str, dict[str, Any] | Callable[[ToolCall], Any]] = {}
        self.approval = set(approval or ())
        self.gates: dict[str, asyncio.Event] = {}
        self.executed: list[str] = []

    def add(self, name: str, result: Any = None, requires_approval: bool = False) -> None:
        self.results[name] = result if result is not None else {"success": True, "output": name}
        if requires_approval:
            self.approval.add(name)

    def has_tool(self, name: str) -> bool:
        return name in self.results

    def requires_approval(self, call: ToolCall) -> bool:
        return call.name in self.approval

    def tool_schemas(self, names=None):
        return [
            {"type": "function", "function": {"name": name, "description": name, "parameters": {}}}
            for name in self.results
            if names is None or name in names
        ]

    async def execute(self, call: ToolCall) -> dict[str, Any]:
        self.executed.append(call.call_id)
        gate = self.gates.get(call.name)
        if gate is not None:
            await gate.wait()
        result = self.results[call.name]
        if callable(result):
            return result(call)
        return dict(result)


class FakeRunner:
    """
    Agent runner returning scripted results per agent.

    A script entry is an AgentRunResult, an exception to raise, or a callable
    receiving the prompt. The last entry of a script repeats.
    """

    def __init__(self, scripts: dict[str, list[Any]] | None = None, delay: float = 0.0):
        self.scripts = {name: list(items) for name, items in (scripts or {}).items()}
        self.delay = delay
        self.calls: list[tuple[str, str, list[dict[str, Any]] | None]] = []

    async def run(self, agent, prompt, context=None):
        self.calls.append((agent.name, prompt, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        script = self.scripts.get(agent.name)
        if not script:
            return AgentRunResult(agent=agent.name, output=f"{agent.name}: {prompt}")
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(prompt)
        if isinstance(item, AgentRunResult):
            return item
        return AgentRunResult(agent=agent.name, output=str(item))

    def agents_called(self) -> list[str]:
        return [name for name, _, _ in self.calls]


def tool_request(call_id: str, name: str, **args: Any) -> ToolCallRequestEvent:
    return ToolCallRequestEvent(call_id=call_id, name=name, args=args)


def make_agent(
    name: str,
    keywords: tuple[str, ...] = (),
    patterns: tuple[str, ...] = (),
    priority: int = 0,
    handoffs: tuple[str, ...] = (),
    include_context: bool = False,
) -> AgentDefinition:
    return AgentDefinition(
        name=name,
        description=f"{name} agent",
        triggers=AgentTriggers(keywords=frozenset(keywords), patterns=patterns, priority=priority),
        handoffs=tuple(HandoffRule(to=target, include_context=include_context) for target in handoffs),
    )


