"""
Agent Definitions

Immutable agent profiles consumed by the router, the handoff manager and the
workflow executor. Definitions are validated when they are constructed, so a
loaded AgentDefinition is always usable: trigger patterns compile, priority
is within range and handoff targets are named.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from conductor.core.domain.errors import DefinitionError


class ContextMode(str, Enum):
    """Whether an agent sees the caller's conversation context."""

    ISOLATED = "isolated"
    SHARED = "shared"


@dataclass(frozen=True)
class AgentTriggers:
    """
    Signals used by rule-based routing.

    Attributes:
        keywords: Terms matched case-insensitively as whole words
        patterns: Regular expression sources matched with re.search
        priority: 0-100, scales the rule score by (1 + priority / 200)
    """

    keywords: frozenset[str] = frozenset()
    patterns: tuple[str, ...] = ()
    priority: int = 0
    compiled_patterns: tuple[re.Pattern[str], ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not 0 <= self.priority <= 100:
            raise DefinitionError(f"Trigger priority must be within 0-100, got {self.priority}")

        normalized = frozenset(k.strip().lower() for k in self.keywords if k.strip())
        object.__setattr__(self, "keywords", normalized)
        object.__setattr__(self, "patterns", tuple(self.patterns))

        compiled = []
        for pattern in self.patterns:
            try:
                compiled.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                raise DefinitionError(f"Invalid trigger pattern {pattern!r}: {e}") from e
        object.__setattr__(self, "compiled_patterns", tuple(compiled))


@dataclass(frozen=True)
class ToolPolicy:
    """Allow/deny lists for tools; deny wins and an empty allow list allows all."""

    allow: frozenset[str] = frozenset()
    deny: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "allow", frozenset(self.allow))
        object.__setattr__(self, "deny", frozenset(self.deny))

    def permits(self, tool_name: str) -> bool:
        if tool_name in self.deny:
            return False
        if self.allow:
            return tool_name in self.allow
        return True


@dataclass(frozen=True)
class HandoffRule:
    """A declared transfer target of an agent."""

    to: str
    condition: str = ""
    include_context: bool = False

    def __post_init__(self) -> None:
        if not self.to.strip():
            raise DefinitionError("Handoff rule requires a target agent")


@dataclass(frozen=True)
class AgentDefinition:
    """
    A named, scoped behavior profile that can handle a user turn.

    Attributes:
        name: Unique agent identifier used for routing and handoffs
        title: Human readable title
        description: What the agent is for (shown to the model classifier)
        system_prompt: Instructions prepended to every turn of this agent
        context_mode: Whether the agent shares the caller's conversation
        triggers: Rule-routing signals
        tool_policy: Tools this agent may call
        handoffs: Declared transfer targets, in priority order
    """

    name: str
    title: str = ""
    description: str = ""
    system_prompt: str = ""
    context_mode: ContextMode = ContextMode.ISOLATED
    triggers: AgentTriggers = field(default_factory=AgentTriggers)
    tool_policy: ToolPolicy = field(default_factory=ToolPolicy)
    handoffs: tuple[HandoffRule, ...] = ()

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise DefinitionError("Agent definition requires a name")
        object.__setattr__(self, "handoffs", tuple(self.handoffs))

    @property
    def display_name(self) -> str:
        return self.title or self.name

    def handoff_rule_for(self, target: str) -> HandoffRule | None:
        """Return the declared handoff rule for target, if any."""
        for rule in self.handoffs:
            if rule.to == target:
                return rule
        return None
