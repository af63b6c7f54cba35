"""
Todo Scheduler

Executes todos one at a time, in dependency order. A single todo can be run
on demand once its dependencies are completed; batch mode walks every ready
todo through an ExecutionQueue owned by the Session.

The scheduler's reaction methods (start_batch, advance, on_todo_completed,
on_error, on_cancel) are the only code that changes todo status during a run.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.errors import AbortError, BatchAlreadyActiveError
from conductor.core.domain.events import emit
from conductor.core.domain.todos import Plan, Todo, TodoStatus, TodoStore, build_todo_prompt
from conductor.core.domain.tool_calls import ApprovalMode, ToolCallTracker
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.runner import AgentRunResult

DEFAULT_CONTINUATION_DELAY = 0.5

# Runs the agent on one todo prompt
TodoRunner = Callable[[Todo, str, CancellationToken | None], Awaitable[AgentRunResult]]


@dataclass
class ExecutionQueue:
    """
    State of an active batch.

    Attributes:
        mode: Approval mode applied for the duration of the batch
        total_count: Pending todos when the batch started
        current_index: 1-based position of the executing todo
        executing_todo_id: Todo currently in progress
    """

    mode: ApprovalMode
    total_count: int
    current_index: int = 0
    executing_todo_id: str | None = None
    active: bool = True
    executed: list[str] = field(default_factory=list)


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class BatchReport:
    """Outcome of a batch run; completed counts the todos finished in it."""

    status: BatchStatus
    completed: int
    total: int
    executed: list[str] = field(default_factory=list)
    cancelled_todo: str | None = None
    error: str | None = None

    def summary(self) -> str:
        if self.status == BatchStatus.COMPLETED:
            return f"Batch complete: {self.completed}/{self.total} todos executed"
        verb = "cancelled" if self.status == BatchStatus.CANCELLED else "failed"
        text = f"Batch {verb}: {self.completed}/{self.total} todos completed"
        return f"{text} ({self.error})" if self.error else text


@dataclass
class Session:
    """
    Per-conversation state: todos, plan, tool call tracker and at most one
    active ExecutionQueue.
    """

    tracker: ToolCallTracker
    todos: TodoStore = field(default_factory=TodoStore)
    plan: Plan | None = None
    queue: ExecutionQueue | None = None
    history: list[dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def batch_active(self) -> bool:
        return self.queue is not None and self.queue.active


class TodoScheduler:
    """
    Drives todo execution for one Session.

    Args:
        session: Owner of the todos and the queue
        audit_sink: Receives batch and todo events
        continuation_delay: Pause between two todos of a batch
    """

    def __init__(
        self,
        session: Session,
        audit_sink: AuditSinkProtocol | None = None,
        continuation_delay: float = DEFAULT_CONTINUATION_DELAY,
    ):
        self.session = session
        self.audit_sink = audit_sink
        self.continuation_delay = continuation_delay
        self.logger = structlog.get_logger().bind(component="todo_scheduler", session=session.id)

    # ----- single todo -----

    async def execute_todo(
        self,
        todo_id: str,
        runner: TodoRunner,
        cancel: CancellationToken | None = None,
    ) -> AgentRunResult:
        """
        Run one todo now.

        Raises:
            UnmetDependencyError: before any status change, when a
                dependency is not completed
            BatchAlreadyActiveError: while a batch owns the session
            Exception: whatever the runner raised; the todo is pending again
        """
        if self.session.batch_active:
            raise BatchAlreadyActiveError("A batch is running; wait for it or cancel it first")
        todos = self.session.todos
        todo = todos.check_ready(todo_id)

        todos.set_status(todo.id, TodoStatus.IN_PROGRESS)
        self._emit_todo(todo)
        try:
            result = await runner(todo, build_todo_prompt(todo), cancel)
        except AbortError as e:
            todos.set_status(todo.id, TodoStatus.CANCELLED)
            self._emit_todo(todo)
            return AgentRunResult(agent="", success=False, error=str(e))
        except Exception as e:
            self.logger.error(
                "todo.failed", todo=todo.id, error=str(e), error_type=type(e).__name__
            )
            todos.set_status(todo.id, TodoStatus.PENDING)
            self._emit_todo(todo)
            raise

        if cancel is not None and cancel.cancelled:
            todos.set_status(todo.id, TodoStatus.CANCELLED)
        elif result.success:
            todos.set_status(todo.id, TodoStatus.COMPLETED)
        else:
            self.logger.warning("todo.failed", todo=todo.id, error=result.error)
            todos.set_status(todo.id, TodoStatus.PENDING)
        self._emit_todo(todo)
        return result

    def complete_single_in_progress(self) -> Todo | None:
        """
        Outside batch mode, mark the only in-progress todo completed.

        Best effort: nothing happens when zero or several todos are in
        progress.
        """
        if self.session.batch_active:
            return None
        in_progress = self.session.todos.with_status(TodoStatus.IN_PROGRESS)
        if len(in_progress) != 1:
            return None
        todo = self.session.todos.set_status(in_progress[0].id, TodoStatus.COMPLETED)
        self.logger.info("todo.auto_completed", todo=todo.id)
        self._emit_todo(todo)
        return todo

    # ----- batch reactions -----

    async def start_batch(self, mode: ApprovalMode = ApprovalMode.DEFAULT) -> ExecutionQueue:
        """
        Create the ExecutionQueue.

        Raises:
            CyclicDependencyError: before anything is dispatched
            BatchAlreadyActiveError: when a queue is already active
        """
        if self.session.batch_active:
            raise BatchAlreadyActiveError("A batch is already running for this session")
        self.session.todos.ordered()

        pending = self.session.todos.with_status(TodoStatus.PENDING)
        queue = ExecutionQueue(mode=ApprovalMode(mode), total_count=len(pending))
        self.session.queue = queue
        await self.session.tracker.set_approval_mode(queue.mode)

        self.logger.info("batch.started", total=queue.total_count, mode=queue.mode.value)
        emit(self.audit_sink, "batch.started", total=queue.total_count, mode=queue.mode.value)
        return queue

    def advance(self) -> Todo | None:
        """Start the next ready todo, or return None when none is left."""
        queue = self._active_queue()
        todo = self.session.todos.next_ready()
        if todo is None:
            return None
        queue.current_index += 1
        queue.executing_todo_id = todo.id
        self.session.todos.set_status(todo.id, TodoStatus.IN_PROGRESS)
        self.logger.info(
            "batch.todo_started",
            todo=todo.id,
            index=queue.current_index,
            total=queue.total_count,
        )
        self._emit_todo(todo)
        return todo

    def on_todo_completed(self, todo_id: str) -> None:
        queue = self._active_queue()
        todo = self.session.todos.set_status(todo_id, TodoStatus.COMPLETED)
        queue.executed.append(todo_id)
        queue.executing_todo_id = None
        self._emit_todo(todo)

    async def finish_batch(self) -> BatchReport:
        queue = self._active_queue()
        report = BatchReport(
            status=BatchStatus.COMPLETED,
            completed=len(queue.executed),
            total=queue.total_count,
            executed=list(queue.executed),
        )
        return await self._close(report)

    async def on_error(self, error: str) -> BatchReport:
        return await self._stop(BatchStatus.FAILED, error)

    async def on_cancel(self, reason: str = "Batch cancelled by user") -> BatchReport:
        return await self._stop(BatchStatus.CANCELLED, reason)

    # ----- batch driver -----

    async def run_batch(
        self,
        runner: TodoRunner,
        mode: ApprovalMode = ApprovalMode.DEFAULT,
        cancel: CancellationToken | None = None,
    ) -> BatchReport:
        """Execute every ready todo in dependency order."""
        queue = await self.start_batch(mode)

        while True:
            if cancel is not None and cancel.cancelled:
                return await self.on_cancel(cancel.reason or "Batch cancelled by user")

            todo = self.advance()
            if todo is None:
                return await self.finish_batch()

            prompt = build_todo_prompt(todo, queue.current_index, queue.total_count)
            try:
                result = await runner(todo, prompt, cancel)
            except AbortError as e:
                return await self.on_cancel(str(e))
            except Exception as e:
                self.logger.error(
                    "batch.todo_failed", todo=todo.id, error=str(e), error_type=type(e).__name__
                )
                return await self.on_error(str(e))

            if cancel is not None and cancel.cancelled:
                return await self.on_cancel(cancel.reason or "Batch cancelled by user")
            if not result.success:
                return await self.on_error(result.error or f"Todo '{todo.id}' failed")

            self.on_todo_completed(todo.id)
            if self.continuation_delay > 0:
                await asyncio.sleep(self.continuation_delay)

    # ----- internals -----

    def _active_queue(self) -> ExecutionQueue:
        queue = self.session.queue
        if queue is None or not queue.active:
            raise RuntimeError("No active batch")
        return queue

    async def _stop(self, status: BatchStatus, error: str) -> BatchReport:
        queue = self._active_queue()
        cancelled_todo = queue.executing_todo_id
        if cancelled_todo is not None:
            todo = self.session.todos.set_status(cancelled_todo, TodoStatus.CANCELLED)
            self._emit_todo(todo)
        self.session.tracker.cancel_all(reason=error)

        completed = max(queue.current_index - 1, 0) if cancelled_todo else queue.current_index
        report = BatchReport(
            status=status,
            completed=completed,
            total=queue.total_count,
            executed=list(queue.executed),
            cancelled_todo=cancelled_todo,
            error=error,
        )
        return await self._close(report)

    async def _close(self, report: BatchReport) -> BatchReport:
        queue = self._active_queue()
        queue.active = False
        self.session.queue = None
        await self.session.tracker.set_approval_mode(ApprovalMode.DEFAULT)

        log = self.logger.info if report.status == BatchStatus.COMPLETED else self.logger.warning
        log(
            "batch.finished",
            status=report.status.value,
            completed=report.completed,
            total=report.total,
            error=report.error,
        )
        emit(
            self.audit_sink,
            "batch.finished",
            status=report.status.value,
            completed=report.completed,
            total=report.total,
            cancelled_todo=report.cancelled_todo,
            error=report.error,
        )
        return report

    def _emit_todo(self, todo: Todo) -> None:
        emit(self.audit_sink, "todo.status", todo=todo.id, status=todo.status.value)
