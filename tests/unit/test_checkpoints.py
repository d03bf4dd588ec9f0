import asyncio

import pytest

from orchestra.memory.checkpoints import (
    CheckpointScheduler,
    CheckpointSink,
    CheckpointState,
    CheckpointTrigger,
    InMemoryCheckpointSink,
)
from orchestra.schemas.messages import AgentMessage, Task


def producer_for(task, calls):
    def produce(task_id):
        calls.append(task_id)
        return CheckpointState(
            task=task,
            agent_name="orchestrator",
            message_history=[AgentMessage(role="user", content=task.prompt)],
        )

    return produce


@pytest.mark.asyncio
async def test_interval_checkpoints_stop_when_task_finishes():
    task = Task(id="t1", prompt="long task")
    calls = []
    sink = InMemoryCheckpointSink()
    scheduler = CheckpointScheduler(sink, interval=0.01)
    scheduler.register(task.id, producer_for(task, calls))

    scheduler.schedule_by_interval(task.id)
    await asyncio.sleep(0.06)
    assert len(calls) >= 2
    assert all(c.trigger is CheckpointTrigger.INTERVAL for c in sink.for_task("t1"))

    assert scheduler.cancel_all_for_task(task.id) == 1
    fired = len(calls)
    await asyncio.sleep(0.05)

    assert len(calls) == fired
    assert scheduler.active_schedules("t1") == 0


@pytest.mark.asyncio
async def test_cancelling_one_task_keeps_other_schedules():
    calls = []
    scheduler = CheckpointScheduler(interval=0.01)
    for task_id in ("t1", "t2"):
        scheduler.register(task_id, producer_for(Task(id=task_id, prompt=task_id), calls))
        scheduler.schedule_by_interval(task_id)

    scheduler.cancel_all_for_task("t1")
    await asyncio.sleep(0.04)

    assert scheduler.active_schedules() == 1
    assert "t2" in calls
    await scheduler.shutdown()
    assert scheduler.active_schedules() == 0


@pytest.mark.asyncio
async def test_error_checkpoint_fires_once_with_the_error():
    task = Task(id="t1", prompt="boom")
    calls = []
    scheduler = CheckpointScheduler()
    scheduler.register(task.id, producer_for(task, calls))

    checkpoint = await scheduler.create_error_checkpoint(task.id, RuntimeError("provider down"))

    assert checkpoint.trigger is CheckpointTrigger.ERROR
    assert checkpoint.error == "provider down"
    assert checkpoint.metadata == {"exception": "RuntimeError"}
    assert scheduler.sink.latest("t1") is checkpoint
    assert calls == ["t1"]


@pytest.mark.asyncio
async def test_delegation_and_subtask_checkpoints_carry_metadata():
    task = Task(id="t1", prompt="delegate")
    scheduler = CheckpointScheduler()
    scheduler.register(task.id, producer_for(task, []))

    before = await scheduler.create_delegation_checkpoint(task.id, "coder", "before", sub_task_id="t1-coder")
    step = await scheduler.create_subtask_checkpoint(task.id, 2, agent="tester")

    assert before.metadata == {"agent": "coder", "phase": "before", "sub_task_id": "t1-coder"}
    assert step.trigger is CheckpointTrigger.SUBTASK
    assert step.metadata == {"step": 2, "agent": "tester"}


@pytest.mark.asyncio
async def test_unregistered_task_produces_no_checkpoint():
    scheduler = CheckpointScheduler()

    assert await scheduler.create_checkpoint("ghost") is None
    assert len(scheduler.sink) == 0


@pytest.mark.asyncio
async def test_sink_failures_do_not_propagate():
    class BrokenSink(CheckpointSink):
        async def save(self, checkpoint):
            raise OSError("disk full")

    task = Task(id="t1", prompt="x")
    scheduler = CheckpointScheduler(BrokenSink())
    scheduler.register(task.id, producer_for(task, []))

    assert await scheduler.create_checkpoint(task.id) is None


def test_interval_must_be_positive():
    scheduler = CheckpointScheduler()

    with pytest.raises(ValueError):
        scheduler.schedule_by_interval("t1", interval=0)
