import asyncio

import pytest

from orchestra.agents.registry import AgentRegistry
from orchestra.agents.specialist import SpecialistAgent
from orchestra.memory.checkpoints import CheckpointTrigger
from orchestra.schemas.messages import Task, ToolCall
from orchestra.utils.llm_clients import ClientPool, LLMResponse, ScriptedLLMClient
from orchestra.workflows.decision import FALLBACK_QUESTION
from orchestra.workflows.orchestrator import Orchestrator


async def no_sleep(delay):
    return None


def decision(name, **params):
    return LLMResponse(tool_calls=[ToolCall(id="d1", name=name, input=params)])


def specialist(name, *replies, delay=0.0):
    client = ScriptedLLMClient([LLMResponse(text=r) for r in replies], delay=delay)
    agent = SpecialistAgent(
        name, f"{name} agent", system_prompt=f"You are {name}.", client_pool=ClientPool.of(client), sleep=no_sleep
    )
    return agent, client


def orchestrator(router, *agents, **kwargs):
    return Orchestrator(AgentRegistry(agents), client_pool=ClientPool.of(router), sleep=no_sleep, **kwargs)


@pytest.mark.asyncio
async def test_simple_question_is_answered_directly():
    coder, coder_client = specialist("coder")
    router = ScriptedLLMClient([LLMResponse(text="Paris")])
    orch = orchestrator(router, coder)

    result = await orch.run(Task(id="t1", prompt="What is the capital of France?"))

    assert result.success
    assert result.output == "Paris"
    assert coder_client.calls == []
    assert orch.checkpoints.active_schedules() == 0


@pytest.mark.asyncio
async def test_delegation_runs_the_specialist_between_checkpoints():
    coder, coder_client = specialist("coder", "hello.py written")
    router = ScriptedLLMClient([decision("delegate_to_agent", agent="coder", task="write hello world")])
    orch = orchestrator(router, coder)
    events = []
    orch.subscribe(lambda event, data: events.append((event, data)))

    result = await orch.run(Task(id="t1", prompt="Write a hello world script", context={"lang": "python"}))

    assert result.success
    assert result.output == "[coder] hello.py written"
    assert result.data["delegated_to"] == "coder"
    assert result.data["sub_task_id"].startswith("t1-coder-")
    assert result.data["circuit_state"] == "closed"
    assert result.data["sub_task_metrics"].llm_calls == 1
    assert "write hello world" in coder_client.calls[0].messages[0].content

    checkpoints = orch.checkpoints.sink.for_task("t1")
    phases = [c.metadata["phase"] for c in checkpoints if c.trigger is CheckpointTrigger.DELEGATION]
    assert phases == ["before", "after"]
    assert checkpoints[0].state.message_history[0].role == "user"
    assert orch.checkpoints.active_schedules() == 0
    assert ("orchestrator:decision", {"agent": "orchestrator", "task_id": "t1", "action": "delegate"}) in events


@pytest.mark.asyncio
async def test_failed_delegation_is_reported_with_the_agent():
    coder, _ = specialist("coder")
    router = ScriptedLLMClient([decision("delegate_to_agent", agent="coder", task="do it")])
    orch = orchestrator(router, coder)

    result = await orch.run(Task(id="t1", prompt="do it"))

    assert not result.success
    assert result.output.startswith("[coder] Task failed")
    assert result.errors[0].agent == "coder"


@pytest.mark.asyncio
async def test_unparseable_routing_asks_the_user():
    router = ScriptedLLMClient([LLMResponse(text="")])
    orch = orchestrator(router, specialist("coder")[0])

    result = await orch.run(Task(id="t1", prompt="hmm"))

    assert result.success
    assert result.output == FALLBACK_QUESTION
    assert result.data["needs_clarification"] is True
    assert result.data["reason"]
    assert "answers" not in result.data


@pytest.mark.asyncio
async def test_clarifying_question_goes_through_the_callback():
    asked = []

    async def ask(questions):
        asked.extend(q.question for q in questions)
        return ["PostgreSQL"]

    router = ScriptedLLMClient([decision("ask_user", question="Which database?")])
    orch = orchestrator(router, specialist("coder")[0])
    orch.set_ask_user_callback(ask)

    result = await orch.run(Task(id="t1", prompt="set up the database"))

    assert asked == ["Which database?"]
    assert result.output == "Which database?"
    assert result.data["answers"] == ["PostgreSQL"]


@pytest.mark.asyncio
async def test_complete_decision_reports_artifacts():
    router = ScriptedLLMClient(
        [decision("complete_task", result="Nothing left to do", summary="already done", artifacts=["app.py"])]
    )
    orch = orchestrator(router, specialist("coder")[0])

    result = await orch.run(Task(id="t1", prompt="finish up"))

    assert result.output == "Nothing left to do"
    assert result.data == {"summary": "already done"}
    assert [(a.kind, a.path, a.agent) for a in result.artifacts] == [("file", "app.py", "orchestrator")]


@pytest.mark.asyncio
async def test_decomposition_runs_the_plan_and_reports_progress():
    explore, _ = specialist("explore", "auth lives in auth.py")
    coder, coder_client = specialist("coder", "2FA added")
    router = ScriptedLLMClient(
        [
            decision(
                "create_subtasks",
                tasks=[
                    {"agent": "explore", "description": "find the auth module"},
                    {"agent": "coder", "description": "add 2FA", "dependsOn": [0]},
                ],
                reasoning="explore then code",
            )
        ]
    )
    orch = orchestrator(router, explore, coder)
    progress = []
    orch.subscribe(lambda event, data: progress.append(data["completed"]) if event == "task:progress" else None)

    result = await orch.run(Task(id="t1", prompt="Add 2FA"))

    assert result.success
    assert result.data["plan_id"] == "plan-t1"
    assert result.data["reasoning"] == "explore then code"
    assert progress == [1, 2]
    assert orch.current_plan.completed_count == 2
    assert "auth lives in auth.py" in coder_client.calls[0].messages[0].content

    subtask_checkpoints = [c for c in orch.checkpoints.sink.for_task("t1") if c.trigger is CheckpointTrigger.SUBTASK]
    assert [c.metadata["step"] for c in subtask_checkpoints] == [0, 1]
    assert subtask_checkpoints[0].state.total_steps == 2
    assert subtask_checkpoints[-1].state.progress == 1.0


@pytest.mark.asyncio
async def test_routing_failure_writes_an_error_checkpoint():
    router = ScriptedLLMClient([RuntimeError("provider down")])
    orch = orchestrator(router, specialist("coder")[0])

    result = await orch.run(Task(id="t1", prompt="anything"))

    assert not result.success
    assert result.errors[0].code == "AGENT_ERROR"
    errors = [c for c in orch.checkpoints.sink.for_task("t1") if c.trigger is CheckpointTrigger.ERROR]
    assert len(errors) == 1
    assert errors[0].error == "provider down"
    assert orch.checkpoints.active_schedules() == 0


@pytest.mark.asyncio
async def test_interval_checkpoints_run_only_while_the_task_is_active():
    router = ScriptedLLMClient([LLMResponse(text="slow answer")], delay=0.06)
    orch = orchestrator(router, specialist("coder")[0], checkpoint_interval=0.01)

    result = await orch.run(Task(id="t1", prompt="think hard"))
    written = len(orch.checkpoints.sink.for_task("t1"))
    await asyncio.sleep(0.04)

    assert result.success
    assert written >= 1
    assert len(orch.checkpoints.sink.for_task("t1")) == written
    assert orch.checkpoints.active_schedules() == 0


@pytest.mark.asyncio
async def test_agent_status_tool_lists_specialists():
    coder, _ = specialist("coder")
    orch = orchestrator(ScriptedLLMClient(), coder)

    everyone = await orch.tools.execute("get_agent_status", {})
    one = await orch.tools.execute("get_agent_status", {"agent": "coder"})
    missing = await orch.tools.execute("get_agent_status", {"agent": "ghost"})

    assert [info["name"] for info in everyone.output] == ["coder"]
    assert one.output["status"] == "idle"
    assert not missing.success


def test_execution_mode_controls():
    orch = orchestrator(ScriptedLLMClient(), specialist("coder")[0])

    orch.set_execution_mode("strict")
    orch.enter_plan_mode()
    assert orch.execution_mode.is_plan_mode()
    orch.exit_plan_mode()

    assert orch.execution_mode.mode == "strict"
    assert orch.execution_mode.approval_handler is not None


@pytest.mark.asyncio
async def test_timeout_writes_an_error_checkpoint_and_stops_schedules():
    router = ScriptedLLMClient([LLMResponse(text="too late")], delay=0.2)
    orch = orchestrator(router, specialist("coder")[0], timeout=0.05)

    result = await orch.run(Task(id="t1", prompt="slow routing"))

    assert not result.success
    assert result.errors[0].code == "TIMEOUT"
    errors = [c for c in orch.checkpoints.sink.for_task("t1") if c.trigger is CheckpointTrigger.ERROR]
    assert [c.metadata for c in errors] == [{"exception": "CancelledError"}]
    assert orch.checkpoints.active_schedules() == 0
