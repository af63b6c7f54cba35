"""
Unit Tests for the TodoScheduler

Todos are executed by a recording runner; batch tests run with no
continuation delay.
"""

import pytest

from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.errors import (
    BatchAlreadyActiveError,
    CyclicDependencyError,
    UnmetDependencyError,
)
from conductor.core.domain.scheduler import BatchStatus, Session, TodoScheduler
from conductor.core.domain.todos import Todo, TodoStatus, TodoStore
from conductor.core.domain.tool_calls import ApprovalMode, ToolCallTracker
from conductor.core.interfaces.runner import AgentRunResult
from fakes import FakeToolExecutor


class RecordingRunner:
    """Runs todos by recording their prompts; hooks can change the outcome."""

    def __init__(self):
        self.prompts: dict[str, str] = {}
        self.order: list[str] = []
        self.hooks = {}

    async def __call__(self, todo, prompt, cancel):
        self.order.append(todo.id)
        self.prompts[todo.id] = prompt
        hook = self.hooks.get(todo.id)
        if hook is not None:
            return hook(cancel)
        return AgentRunResult(agent="general", output=f"did {todo.id}")


def chain_todos():
    return [
        Todo(id="step-1", description="Create model"),
        Todo(id="step-2", description="Add service", dependencies=["step-1"]),
        Todo(id="step-3", description="Write tests", dependencies=["step-2"]),
    ]


@pytest.fixture
def session():
    return Session(tracker=ToolCallTracker(FakeToolExecutor()), todos=TodoStore(chain_todos()))


@pytest.fixture
def scheduler(session, audit_sink):
    return TodoScheduler(session, audit_sink=audit_sink, continuation_delay=0)


@pytest.fixture
def runner():
    return RecordingRunner()


def statuses(session):
    return {t.id: t.status for t in session.todos}


class TestExecuteTodo:
    """Tests for running a single todo."""

    @pytest.mark.asyncio
    async def test_completes_ready_todo(self, scheduler, session, runner):
        result = await scheduler.execute_todo("step-1", runner)

        assert result.success
        assert session.todos.get("step-1").status == TodoStatus.COMPLETED
        assert runner.prompts["step-1"] == "Execute this task: Create model"

    @pytest.mark.asyncio
    async def test_unmet_dependency_changes_nothing(self, scheduler, session, runner):
        with pytest.raises(UnmetDependencyError):
            await scheduler.execute_todo("step-2", runner)
        assert all(status == TodoStatus.PENDING for status in statuses(session).values())
        assert runner.order == []

    @pytest.mark.asyncio
    async def test_failed_todo_returns_to_pending(self, scheduler, session, runner):
        runner.hooks["step-1"] = lambda cancel: AgentRunResult(agent="g", success=False, error="x")
        result = await scheduler.execute_todo("step-1", runner)
        assert not result.success
        assert session.todos.get("step-1").status == TodoStatus.PENDING

    @pytest.mark.asyncio
    async def test_runner_exception_returns_todo_to_pending(self, scheduler, session, runner):
        def boom(cancel):
            raise RuntimeError("boom")

        runner.hooks["step-1"] = boom
        with pytest.raises(RuntimeError, match="boom"):
            await scheduler.execute_todo("step-1", runner)

        assert session.todos.get("step-1").status == TodoStatus.PENDING
        assert scheduler.complete_single_in_progress() is None

    @pytest.mark.asyncio
    async def test_cancelled_todo_is_marked_cancelled(self, scheduler, session, runner):
        cancel = CancellationToken()

        def cancel_now(token):
            token.cancel()
            return AgentRunResult(agent="g", output="partial")

        runner.hooks["step-1"] = cancel_now
        await scheduler.execute_todo("step-1", runner, cancel)
        assert session.todos.get("step-1").status == TodoStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_refused_while_batch_is_active(self, scheduler, runner):
        await scheduler.start_batch()
        with pytest.raises(BatchAlreadyActiveError):
            await scheduler.execute_todo("step-1", runner)

    def test_auto_complete_single_in_progress(self, scheduler, session):
        session.todos.set_status("step-1", TodoStatus.IN_PROGRESS)
        assert scheduler.complete_single_in_progress().id == "step-1"
        assert session.todos.get("step-1").status == TodoStatus.COMPLETED

    def test_auto_complete_ignores_ambiguous_state(self, scheduler, session):
        session.todos.set_status("step-1", TodoStatus.IN_PROGRESS)
        session.todos.set_status("step-2", TodoStatus.IN_PROGRESS)
        assert scheduler.complete_single_in_progress() is None
        assert session.todos.get("step-1").status == TodoStatus.IN_PROGRESS


class TestBatch:
    """Tests for batch execution."""

    @pytest.mark.asyncio
    async def test_runs_in_dependency_order(self, session, runner, audit_sink):
        session.todos.replace(list(reversed(chain_todos())))
        scheduler = TodoScheduler(session, audit_sink=audit_sink, continuation_delay=0)

        report = await scheduler.run_batch(runner)

        assert report.status == BatchStatus.COMPLETED
        assert runner.order == ["step-1", "step-2", "step-3"]
        assert runner.prompts["step-2"].startswith("[Batch Execution 2/3] Add service")
        assert report.summary() == "Batch complete: 3/3 todos executed"
        assert session.queue is None
        assert [e.kind for e in audit_sink.events][0] == "batch.started"
        assert audit_sink.of_kind("batch.finished")[0].payload["status"] == "completed"

    @pytest.mark.asyncio
    async def test_cancel_mid_batch(self, scheduler, session, runner):
        cancel = CancellationToken()

        def cancel_now(token):
            token.cancel("Ctrl-C")
            return AgentRunResult(agent="g", output="partial")

        runner.hooks["step-2"] = cancel_now
        report = await scheduler.run_batch(runner, cancel=cancel)

        assert report.status == BatchStatus.CANCELLED
        assert report.completed == 1
        assert report.cancelled_todo == "step-2"
        assert statuses(session) == {
            "step-1": TodoStatus.COMPLETED,
            "step-2": TodoStatus.CANCELLED,
            "step-3": TodoStatus.PENDING,
        }
        assert session.queue is None
        assert session.tracker.approval_mode == ApprovalMode.DEFAULT

    @pytest.mark.asyncio
    async def test_failure_stops_batch(self, scheduler, session, runner):
        runner.hooks["step-1"] = lambda cancel: AgentRunResult(agent="g", success=False, error="boom")
        report = await scheduler.run_batch(runner)

        assert report.status == BatchStatus.FAILED
        assert report.error == "boom"
        assert report.completed == 0
        assert runner.order == ["step-1"]
        assert session.todos.get("step-3").status == TodoStatus.PENDING

    @pytest.mark.asyncio
    async def test_runner_exception_fails_batch(self, scheduler, runner):
        def explode(cancel):
            raise RuntimeError("model unavailable")

        runner.hooks["step-1"] = explode
        report = await scheduler.run_batch(runner)
        assert report.status == BatchStatus.FAILED
        assert "model unavailable" in report.summary()

    @pytest.mark.asyncio
    async def test_cycle_is_rejected_before_dispatch(self, session, scheduler, runner):
        session.todos.replace(
            [Todo(id="a", description="a", dependencies=["b"]), Todo(id="b", description="b", dependencies=["a"])]
        )
        with pytest.raises(CyclicDependencyError):
            await scheduler.run_batch(runner)
        assert session.queue is None
        assert runner.order == []

    @pytest.mark.asyncio
    async def test_second_batch_is_refused(self, scheduler):
        await scheduler.start_batch()
        with pytest.raises(BatchAlreadyActiveError):
            await scheduler.start_batch()

    @pytest.mark.asyncio
    async def test_mode_applies_for_batch_duration(self, scheduler, session, runner):
        seen = []

        def record_mode(cancel):
            seen.append(session.tracker.approval_mode)
            return AgentRunResult(agent="g")

        runner.hooks["step-1"] = record_mode
        await scheduler.run_batch(runner, mode=ApprovalMode.AUTO_EDIT)

        assert seen == [ApprovalMode.AUTO_EDIT]
        assert session.tracker.approval_mode == ApprovalMode.DEFAULT

    @pytest.mark.asyncio
    async def test_only_pending_todos_are_counted(self, scheduler, session, runner):
        session.todos.set_status("step-1", TodoStatus.COMPLETED)
        report = await scheduler.run_batch(runner)
        assert report.total == 2
        assert runner.order == ["step-2", "step-3"]
