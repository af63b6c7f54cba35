"""
Todos and Dependency Ordering

A plan produced by a planning turn is converted into a list of Todos. Todos
form a directed graph through their `dependencies`; the scheduler only ever
runs a todo whose dependencies are all completed.
"""

import heapq
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from conductor.core.domain.errors import (
    CyclicDependencyError,
    DefinitionError,
    TodoNotFoundError,
    UnmetDependencyError,
)


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def parse_todo_status(value: Any) -> TodoStatus:
    """Parse loose status strings ("done", "in-progress", ...) with a pending fallback."""
    text = str(value or "").strip().replace("-", "_").replace(" ", "_").lower()
    alias = {
        "open": "pending",
        "todo": "pending",
        "inprogress": "in_progress",
        "done": "completed",
        "complete": "completed",
        "canceled": "cancelled",
    }
    try:
        return TodoStatus(alias.get(text, text))
    except ValueError:
        return TodoStatus.PENDING


@dataclass
class Todo:
    """A dependency-tracked unit of work. Mutated in place by the scheduler."""

    id: str
    description: str
    dependencies: list[str] = field(default_factory=list)
    status: TodoStatus = TodoStatus.PENDING
    risks: list[str] = field(default_factory=list)
    estimated_time: str = ""
    module: str = ""
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "risks": list(self.risks),
            "estimated_time": self.estimated_time,
            "module": self.module,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Todo":
        completed_at = data.get("completed_at")
        return Todo(
            id=str(data["id"]),
            description=str(data.get("description", "")).strip(),
            dependencies=[str(d) for d in data.get("dependencies") or []],
            status=parse_todo_status(data.get("status")),
            risks=[str(r) for r in data.get("risks") or []],
            estimated_time=str(data.get("estimated_time", "") or ""),
            module=str(data.get("module", "") or ""),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )


@dataclass(frozen=True)
class PlanStep:
    id: str
    description: str
    estimated_time: str = ""
    dependencies: tuple[str, ...] = ()
    risks: tuple[str, ...] = ()
    module: str = ""


@dataclass(frozen=True)
class Plan:
    """Structured implementation plan."""

    title: str
    steps: tuple[PlanStep, ...]
    overview: str = ""
    risks: tuple[str, ...] = ()
    testing_strategy: str = ""
    estimated_duration: str = ""

    @staticmethod
    def from_dict(data: Any) -> "Plan":
        """
        Build a Plan from a JSON string or mapping.

        Both snake_case and camelCase keys are accepted
        (estimated_time / estimatedTime, testing_strategy / testingStrategy).
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise DefinitionError(f"Plan is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise DefinitionError("Plan must be a mapping")

        def pick(raw: dict[str, Any], snake: str, camel: str, default: Any = "") -> Any:
            return raw.get(snake, raw.get(camel, default))

        steps = []
        for index, raw in enumerate(data.get("steps") or [], start=1):
            if not isinstance(raw, dict):
                raise DefinitionError(f"Plan step {index} must be a mapping")
            steps.append(
                PlanStep(
                    id=str(raw.get("id") or f"step-{index}"),
                    description=str(raw.get("description", "")).strip(),
                    estimated_time=str(pick(raw, "estimated_time", "estimatedTime") or ""),
                    dependencies=tuple(str(d) for d in raw.get("dependencies") or []),
                    risks=tuple(str(r) for r in raw.get("risks") or []),
                    module=str(raw.get("module", "") or ""),
                )
            )

        return Plan(
            title=str(data.get("title", "")).strip(),
            steps=tuple(steps),
            overview=str(data.get("overview", "")),
            risks=tuple(str(r) for r in data.get("risks") or []),
            testing_strategy=str(pick(data, "testing_strategy", "testingStrategy") or ""),
            estimated_duration=str(pick(data, "estimated_duration", "estimatedDuration") or ""),
        )


def plan_to_todos(plan: Plan) -> list[Todo]:
    """One pending Todo per plan step, in plan order."""
    seen: set[str] = set()
    todos = []
    for step in plan.steps:
        if step.id in seen:
            raise DefinitionError(f"Duplicate plan step id '{step.id}'")
        seen.add(step.id)
        todos.append(
            Todo(
                id=step.id,
                description=step.description,
                dependencies=list(step.dependencies),
                risks=list(step.risks),
                estimated_time=step.estimated_time,
                module=step.module,
            )
        )
    return todos


def topological_order(todos: Sequence[Todo]) -> list[Todo]:
    """
    Order todos so every todo comes after its dependencies.

    Kahn's algorithm; among the todos that are ready at the same time the
    first-declared one wins, so already sorted input is returned unchanged.
    Dependencies on ids outside the list do not constrain the order.

    Raises:
        CyclicDependencyError: listing the ids that could not be ordered.
    """
    index = {todo.id: i for i, todo in enumerate(todos)}
    indegree = [0] * len(todos)
    dependents: dict[int, list[int]] = {i: [] for i in range(len(todos))}

    for i, todo in enumerate(todos):
        for dep in set(todo.dependencies):
            if dep in index:
                indegree[i] += 1
                dependents[index[dep]].append(i)

    ready = [i for i, degree in enumerate(indegree) if degree == 0]
    heapq.heapify(ready)
    ordered: list[Todo] = []
    while ready:
        i = heapq.heappop(ready)
        ordered.append(todos[i])
        for j in dependents[i]:
            indegree[j] -= 1
            if indegree[j] == 0:
                heapq.heappush(ready, j)

    if len(ordered) < len(todos):
        done = {todo.id for todo in ordered}
        raise CyclicDependencyError([todo.id for todo in todos if todo.id not in done])
    return ordered


def unmet_dependencies(todo: Todo, todos: Iterable[Todo]) -> list[str]:
    """Dependencies of todo that are not completed (unknown ids included)."""
    status = {t.id: t.status for t in todos}
    return [dep for dep in todo.dependencies if status.get(dep) != TodoStatus.COMPLETED]


def is_ready(todo: Todo, todos: Iterable[Todo]) -> bool:
    return todo.status == TodoStatus.PENDING and not unmet_dependencies(todo, todos)


def next_ready_todo(todos: Sequence[Todo]) -> Todo | None:
    """First ready todo by topological rank."""
    for todo in topological_order(todos):
        if is_ready(todo, todos):
            return todo
    return None


def build_todo_prompt(todo: Todo, index: int | None = None, total: int | None = None) -> str:
    """Prompt sent to the agent for one todo; batch runs carry an i/n header."""
    if index is not None and total is not None:
        lines = [f"[Batch Execution {index}/{total}] {todo.description}"]
    else:
        lines = [f"Execute this task: {todo.description}"]
    if todo.module:
        lines.append(f"Module: {todo.module}")
    if todo.risks:
        lines.append("Risks to consider:")
        lines.extend(f"- {risk}" for risk in todo.risks)
    return "\n".join(lines)


class TodoStore:
    """Ordered, id-indexed todo list owned by one Session."""

    def __init__(self, todos: Iterable[Todo] = ()):
        self._todos: list[Todo] = []
        self.replace(todos)

    def replace(self, todos: Iterable[Todo]) -> None:
        todos = list(todos)
        ids = [todo.id for todo in todos]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise DefinitionError(f"Duplicate todo ids: {', '.join(duplicates)}")
        self._todos = todos

    def get(self, todo_id: str) -> Todo:
        for todo in self._todos:
            if todo.id == todo_id:
                return todo
        raise TodoNotFoundError(todo_id)

    def all(self) -> list[Todo]:
        return list(self._todos)

    def with_status(self, status: TodoStatus) -> list[Todo]:
        return [todo for todo in self._todos if todo.status == status]

    def ordered(self) -> list[Todo]:
        return topological_order(self._todos)

    def check_ready(self, todo_id: str) -> Todo:
        """The todo, if every dependency is completed; raises before any mutation."""
        todo = self.get(todo_id)
        unmet = unmet_dependencies(todo, self._todos)
        if unmet:
            raise UnmetDependencyError(todo_id, unmet)
        return todo

    def next_ready(self) -> Todo | None:
        return next_ready_todo(self._todos)

    def set_status(self, todo_id: str, status: TodoStatus) -> Todo:
        todo = self.get(todo_id)
        todo.status = status
        todo.completed_at = datetime.now() if status == TodoStatus.COMPLETED else None
        return todo

    def restore(self, saved: Iterable[Todo]) -> list[str]:
        """
        Carry completed todos over from an earlier run.

        Only ids present in the current list are restored; anything saved
        in another status starts pending again. Returns the restored ids.
        """
        completed = {todo.id: todo for todo in saved if todo.status == TodoStatus.COMPLETED}
        restored = []
        for todo in self._todos:
            previous = completed.get(todo.id)
            if previous is None:
                continue
            todo.status = TodoStatus.COMPLETED
            todo.completed_at = previous.completed_at or datetime.now()
            restored.append(todo.id)
        return restored

    def progress(self) -> tuple[int, int]:
        """(completed, total)"""
        return len(self.with_status(TodoStatus.COMPLETED)), len(self._todos)

    def __len__(self) -> int:
        return len(self._todos)

    def __iter__(self):
        return iter(list(self._todos))
