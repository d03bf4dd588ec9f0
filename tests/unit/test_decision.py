import pytest

from orchestra.agents.registry import AgentRegistry
from orchestra.agents.specialist import SpecialistAgent
from orchestra.schemas.decisions import AskUser, Complete, Decompose, Delegate, ExecuteDirectly, SubtaskSpec
from orchestra.schemas.messages import Task, ToolCall
from orchestra.utils.cache import NullCache
from orchestra.utils.llm_clients import LLMResponse, ScriptedLLMClient
from orchestra.workflows.decision import DecisionEngine


def registry(*names):
    return AgentRegistry(SpecialistAgent(name, f"{name} agent", system_prompt="x") for name in names)


def tool_reply(name, **params):
    return LLMResponse(tool_calls=[ToolCall(id="d1", name=name, input=params)])


def engine_for(client, agents=("explore", "coder", "tester"), **kwargs):
    async def call_llm(messages, tools):
        return await client.call("router", messages, tools)

    return DecisionEngine(registry(*agents), call_llm, **kwargs)


@pytest.mark.asyncio
async def test_delegate_decision_is_parsed_and_normalized():
    client = ScriptedLLMClient([tool_reply("delegate_to_agent", agent="Coder", task="  add a login form  ")])

    decision = await engine_for(client).decide(Task(id="t1", prompt="Add a login form"))

    assert decision == Delegate(
        target_agent="coder", task="add a login form", reasoning="Delegating to coder: add a login form"
    )
    assert decision.action == "delegate"


@pytest.mark.asyncio
async def test_analysis_prompt_lists_agents_and_offers_decision_tools():
    client = ScriptedLLMClient([LLMResponse(text="Paris")])

    await engine_for(client).decide(Task(id="t1", prompt="Capital of France?", context={"lang": "en"}))

    recorded = client.calls[0]
    prompt = recorded.messages[0].content
    assert "### explore" in prompt and "### tester" in prompt
    assert "Capital of France?" in prompt
    assert '"lang": "en"' in prompt
    assert set(recorded.tools) == {"delegate_to_agent", "create_subtasks", "complete_task", "ask_user"}


@pytest.mark.asyncio
async def test_plain_text_reply_is_direct_execution():
    client = ScriptedLLMClient([LLMResponse(text="Paris")])

    decision = await engine_for(client).decide(Task(id="t1", prompt="Capital of France?"))

    assert decision == ExecuteDirectly(response="Paris")


@pytest.mark.asyncio
async def test_create_subtasks_builds_decompose_decision():
    client = ScriptedLLMClient(
        [
            tool_reply(
                "create_subtasks",
                tasks=[
                    {"agent": "explore", "description": "find the auth module"},
                    {"agent": "coder", "description": "add 2FA", "dependsOn": [0]},
                    {"agent": "tester", "description": "test 2FA", "dependsOn": [1], "optional": True},
                ],
                reasoning="explore, then code, then test",
            )
        ]
    )

    decision = await engine_for(client).decide(Task(id="t1", prompt="Add 2FA"))

    assert isinstance(decision, Decompose)
    assert decision.subtasks == (
        SubtaskSpec("explore", "find the auth module"),
        SubtaskSpec("coder", "add 2FA", (0,)),
        SubtaskSpec("tester", "test 2FA", (1,), optional=True),
    )
    assert decision.reasoning == "explore, then code, then test"


@pytest.mark.asyncio
async def test_complete_and_ask_user_tools():
    client = ScriptedLLMClient(
        [
            tool_reply("complete_task", result="Already done", summary="nothing to do", artifacts=["a.py"]),
            tool_reply("ask_user", question="Which database?"),
        ]
    )
    engine = engine_for(client)

    completed = await engine.decide(Task(id="t1", prompt="first"))
    asked = await engine.decide(Task(id="t2", prompt="second"))

    assert completed == Complete(response="Already done", summary="nothing to do", artifacts=("a.py",))
    assert asked == AskUser(question="Which database?")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        tool_reply("delegate_to_agent", agent="designer", task="draw a logo"),
        tool_reply("delegate_to_agent", agent="coder", task="   "),
        tool_reply("create_subtasks", tasks=[], reasoning="none"),
        tool_reply("create_subtasks", tasks=[{"agent": "coder", "description": "a", "dependsOn": [3]}]),
        tool_reply(
            "create_subtasks",
            tasks=[
                {"agent": "coder", "description": "a", "dependsOn": [1]},
                {"agent": "tester", "description": "b", "dependsOn": [0]},
            ],
        ),
        tool_reply("create_subtasks", tasks=[{"agent": "coder", "description": "a", "dependsOn": [0]}]),
        LLMResponse(text="   "),
    ],
    ids=["unknown-agent", "empty-task", "no-subtasks", "bad-index", "cycle", "self-dependency", "empty-reply"],
)
async def test_invalid_routing_falls_back_to_ask_user_and_is_not_cached(reply):
    client = ScriptedLLMClient([reply, LLMResponse(text="second try")])
    engine = engine_for(client)

    first = await engine.decide(Task(id="t1", prompt="route me"))
    second = await engine.decide(Task(id="t2", prompt="route me"))

    assert isinstance(first, AskUser)
    assert first.reason
    assert second == ExecuteDirectly(response="second try")


@pytest.mark.asyncio
async def test_too_many_subtasks_fall_back():
    tasks = [{"agent": "coder", "description": f"part {i}"} for i in range(4)]
    client = ScriptedLLMClient([tool_reply("create_subtasks", tasks=tasks, reasoning="split")])

    decision = await engine_for(client, max_subtasks=3).decide(Task(id="t1", prompt="big job"))

    assert isinstance(decision, AskUser)
    assert "too many subtasks" in decision.reason


@pytest.mark.asyncio
async def test_routing_cache_hit_skips_llm_for_equivalent_prompts():
    client = ScriptedLLMClient([tool_reply("delegate_to_agent", agent="coder", task="fix the bug")])
    engine = engine_for(client)

    first = await engine.decide(Task(id="t1", prompt="Fix   the BUG"))
    second = await engine.decide(Task(id="t2", prompt="  fix the bug\n"))

    assert first == second
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_disabled_cache_routes_the_same_way():
    script = [tool_reply("delegate_to_agent", agent="coder", task="fix the bug")] * 2
    client = ScriptedLLMClient(script)
    engine = engine_for(client, cache=NullCache())

    first = await engine.decide(Task(id="t1", prompt="Fix the bug"))
    second = await engine.decide(Task(id="t2", prompt="Fix the bug"))

    assert first == second
    assert len(client.calls) == 2
