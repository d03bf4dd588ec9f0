import pytest

from orchestra.tools.interaction import HumanInTheLoop, Question, interaction_tools
from orchestra.tools.registry import ToolRegistry
from orchestra.utils.execution_mode import ExecutionModeManager, PendingAction


def test_permissions_per_mode():
    manager = ExecutionModeManager("execute")
    assert manager.check_permission("write_file", "write").allowed

    manager.set_mode("plan")
    assert not manager.check_permission("write_file", "write").allowed
    assert manager.check_permission("read_file", "read").allowed

    manager.set_mode("strict")
    check = manager.check_permission("git_push", "git")
    assert check.allowed and check.needs_approval


def test_plan_mode_round_trip_restores_previous_mode():
    manager = ExecutionModeManager("strict")

    manager.enter_plan_mode()
    assert manager.is_plan_mode()
    manager.exit_plan_mode()

    assert manager.mode == "strict"


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        ExecutionModeManager("yolo")


@pytest.mark.asyncio
async def test_strict_mode_without_handler_denies():
    manager = ExecutionModeManager("strict")

    reason = await manager.authorize("deploy", "deploy", {})

    assert reason is not None


@pytest.mark.asyncio
async def test_questions_fall_back_to_first_option_without_callback():
    hitl = HumanInTheLoop()

    answers = await hitl.ask([Question("Framework?", ["React", "Vue"]), Question("Name?")])

    assert answers == ["React", "Option 1"]


@pytest.mark.asyncio
async def test_approval_defaults_to_denied_without_callback():
    approve = HumanInTheLoop().approval_handler()

    assert await approve(PendingAction("rm", "shell", {})) is False


@pytest.mark.asyncio
async def test_approval_uses_ask_callback():
    async def ask(questions):
        return ["Approve"]

    approve = HumanInTheLoop(ask_user=ask).approval_handler()

    assert await approve(PendingAction("deploy", "deploy", {})) is True


@pytest.mark.asyncio
async def test_interaction_tools_route_through_callbacks():
    updates = []

    async def ask(questions):
        return [f"answer to {q.question}" for q in questions]

    hitl = HumanInTheLoop(ask_user=ask, update_todos=updates.append)
    registry = ToolRegistry(interaction_tools(hitl))

    asked = await registry.execute("ask_user_question", {"questions": [{"question": "Color?", "options": ["red"]}]})
    todos = await registry.execute("todo_write", {"todos": [{"content": "write tests", "status": "pending"}]})

    assert asked.output["answers"] == [{"question": "Color?", "answer": "answer to Color?"}]
    assert asked.output["interactive"] is True
    assert todos.success
    assert updates == [[{"content": "write tests", "status": "pending"}]]
    assert hitl.todos[0]["content"] == "write tests"


@pytest.mark.asyncio
async def test_todo_write_without_callback_records_locally():
    hitl = HumanInTheLoop()
    registry = ToolRegistry(interaction_tools(hitl))

    result = await registry.execute("todo_write", {"todos": [{"content": "a", "status": "completed"}]})
    invalid = await registry.execute("todo_write", {"todos": "nope"})

    assert result.output == {"count": 1}
    assert hitl.todos == [{"content": "a", "status": "completed"}]
    assert not invalid.success


@pytest.mark.asyncio
async def test_approval_is_denied_when_the_callback_fails():
    async def ask(questions):
        raise RuntimeError("console closed")

    approve = HumanInTheLoop(ask_user=ask).approval_handler()

    assert await approve(PendingAction("deploy", "deploy", {})) is False
