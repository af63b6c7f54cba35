"""
Unit Tests for the CLI

The orchestrator factory is patched to use the scripted FakeModelService, so
commands run without a model backend.
"""

import json
import threading
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conductor import __version__
from conductor.api.cli import runtime
from conductor.api.cli.main import app
from conductor.application.factory import build_orchestrator
from conductor.core.domain.tool_calls import ToolCall
from conductor.core.domain.turn import ApprovalDecision
from conductor.infrastructure.audit.structlog_sink import MemoryAuditSink
from fakes import FakeModelService

ROOT = Path(__file__).parents[3]
AGENTS = ROOT / "configs" / "agents.yaml"
PLAN = ROOT / "examples" / "plan.json"

runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_backend(monkeypatch):
    model = FakeModelService()

    def build(settings, approval_handler=None):
        return build_orchestrator(
            settings, model_service=model, audit_sink=MemoryAuditSink(), approval_handler=approval_handler
        )

    monkeypatch.setattr(runtime, "build_orchestrator", build)
    monkeypatch.setenv("CONDUCTOR_BATCH_CONTINUATION_DELAY", "0")
    return model


@pytest.fixture
def plan_copy(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(PLAN.read_text(encoding="utf-8"), encoding="utf-8")
    return path


@pytest.fixture
def base_args(tmp_path):
    return ["--config", str(tmp_path / "conductor.yaml"), "--agents", str(AGENTS)]


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_route_json(base_args):
    result = runner.invoke(app, [*base_args, "route", "found CVE-2024-1234 in the parser", "--json"])
    assert result.exit_code == 0
    assert '"agent": "security"' in result.output
    assert '"source": "routed"' in result.output


def test_route_unknown_agent(base_args):
    result = runner.invoke(app, [*base_args, "route", "hello", "--agent", "ghost"])
    assert result.exit_code == 1
    assert "ghost" in result.output


def test_ask(base_args):
    result = runner.invoke(app, [*base_args, "ask", "good morning"])
    assert result.exit_code == 0
    assert "done" in result.output


def test_workflow_run(base_args, tmp_path):
    workflows = tmp_path / "workflows.yaml"
    workflows.write_text(
        "workflows:\n  - name: echo\n    steps:\n      - id: first\n        agent: general\n",
        encoding="utf-8",
    )
    result = runner.invoke(app, [*base_args, "--workflows", str(workflows), "workflow", "run", "echo", "hi", "--json"])
    assert result.exit_code == 0
    assert '"status": "completed"' in result.output


def test_workflow_unknown(base_args):
    result = runner.invoke(app, [*base_args, "workflow", "run", "missing", "hi"])
    assert result.exit_code == 1


def test_todos_plan(base_args):
    result = runner.invoke(app, [*base_args, "todos", "plan", str(PLAN)])
    assert result.exit_code == 0
    assert result.output.index("step-1") < result.output.index("step-3")


def test_todos_run(base_args, fake_backend, plan_copy):
    result = runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--mode", "auto_edit", "--agent", "general"])
    assert result.exit_code == 0
    assert len(fake_backend.seen_messages) == 3


def test_todos_missing_plan(base_args, tmp_path):
    result = runner.invoke(app, [*base_args, "todos", "plan", str(tmp_path / "nope.json")])
    assert result.exit_code != 0


def test_todos_run_single_then_dependent(base_args, plan_copy):
    first = runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--todo", "step-1", "--agent", "general"])
    assert first.exit_code == 0

    second = runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--todo", "step-2", "--agent", "general"])
    assert second.exit_code == 0

    state = json.loads((plan_copy.parent / "plan.todos.json").read_text(encoding="utf-8"))
    statuses = {item["id"]: item["status"] for item in state["todos"]}
    assert statuses == {"step-1": "completed", "step-2": "completed", "step-3": "pending"}


def test_todos_run_resumes_after_completed(base_args, fake_backend, plan_copy):
    runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--todo", "step-1", "--agent", "general"])
    assert len(fake_backend.seen_messages) == 1

    result = runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--agent", "general"])
    assert result.exit_code == 0
    assert len(fake_backend.seen_messages) == 3
    assert "step-1" not in fake_backend.seen_messages[1][-1]["content"]


def test_todos_run_fresh_starts_over(base_args, fake_backend, plan_copy):
    runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--agent", "general"])
    result = runner.invoke(app, [*base_args, "todos", "run", str(plan_copy), "--agent", "general", "--fresh"])

    assert result.exit_code == 0
    assert len(fake_backend.seen_messages) == 6


@pytest.mark.asyncio
async def test_prompt_approval_runs_off_the_event_loop(monkeypatch):
    threads = []

    def ask(*args, **kwargs):
        threads.append(threading.get_ident())
        return "e"

    monkeypatch.setattr(runtime.Prompt, "ask", ask)
    decision = await runtime.prompt_approval(ToolCall(call_id="c1", name="replace", args={"path": "a.py"}))

    assert decision == ApprovalDecision.APPROVE_EDITS
    assert threads and threads[0] != threading.get_ident()
