"""Checkpoints of in-flight tasks.

The scheduler knows nothing about task internals: each registered task id
has a producer callback returning a ``CheckpointState``, and every trigger
(interval tick, error, delegation, finished subtask) asks that producer for a
fresh snapshot and hands it to the sink.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from orchestra.schemas.messages import AgentMessage, Task
from orchestra.utils.retry import Sleep

LOGGER = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL = 30.0


class CheckpointTrigger(str, Enum):
    INTERVAL = "interval"
    ERROR = "error"
    DELEGATION = "delegation"
    SUBTASK = "subtask"
    MANUAL = "manual"


@dataclass
class CheckpointState:
    task: Task
    agent_name: str
    message_history: List[AgentMessage] = field(default_factory=list)
    partial_results: Optional[Dict[str, Any]] = None
    progress: Optional[float] = None
    current_step: Optional[int] = None
    total_steps: Optional[int] = None


@dataclass
class Checkpoint:
    id: str
    task_id: str
    trigger: CheckpointTrigger
    state: CheckpointState
    created_at: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class CheckpointSink(ABC):
    """Where checkpoints end up; persistence is up to the implementation."""

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        """Persist one checkpoint."""


class InMemoryCheckpointSink(CheckpointSink):
    """Keeps every checkpoint in a list, grouped lookups by task id."""

    def __init__(self) -> None:
        self._checkpoints: List[Checkpoint] = []

    async def save(self, checkpoint: Checkpoint) -> None:
        self._checkpoints.append(checkpoint)

    def reset(self) -> None:
        self._checkpoints.clear()

    def for_task(self, task_id: str) -> List[Checkpoint]:
        return [c for c in self._checkpoints if c.task_id == task_id]

    def latest(self, task_id: str) -> Optional[Checkpoint]:
        matching = self.for_task(task_id)
        return matching[-1] if matching else None

    def all(self) -> List[Checkpoint]:
        return list(self._checkpoints)

    def __len__(self) -> int:
        return len(self._checkpoints)


StateProducer = Callable[[str], Optional[CheckpointState]]


class CheckpointScheduler:
    def __init__(
        self,
        sink: CheckpointSink | None = None,
        interval: float = DEFAULT_CHECKPOINT_INTERVAL,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.sink = sink or InMemoryCheckpointSink()
        self.interval = interval
        self._sleep = sleep
        self._producers: Dict[str, StateProducer] = {}
        self._schedules: Dict[str, Tuple[str, asyncio.Task]] = {}
        self._ids = itertools.count(1)

    def register(self, task_id: str, producer: StateProducer) -> None:
        self._producers[task_id] = producer

    def unregister(self, task_id: str) -> None:
        self._producers.pop(task_id, None)

    def schedule_by_interval(self, task_id: str, interval: float | None = None) -> str:
        """Checkpoint ``task_id`` every ``interval`` seconds until cancelled."""

        period = interval if interval is not None else self.interval
        if period <= 0:
            raise ValueError("checkpoint interval must be positive")
        schedule_id = f"interval-{next(self._ids)}"
        runner = asyncio.get_running_loop().create_task(self._tick(task_id, period))
        self._schedules[schedule_id] = (task_id, runner)
        LOGGER.debug("Scheduled %s for task %s every %gs", schedule_id, task_id, period)
        return schedule_id

    def cancel(self, schedule_id: str) -> bool:
        entry = self._schedules.pop(schedule_id, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def cancel_all_for_task(self, task_id: str) -> int:
        """Stop every schedule of ``task_id`` and forget its producer."""

        cancelled = [sid for sid, (tid, _) in self._schedules.items() if tid == task_id]
        for schedule_id in cancelled:
            self.cancel(schedule_id)
        self.unregister(task_id)
        if cancelled:
            LOGGER.debug("Cancelled %d checkpoint schedule(s) for task %s", len(cancelled), task_id)
        return len(cancelled)

    def active_schedules(self, task_id: str | None = None) -> int:
        return sum(
            1
            for tid, runner in self._schedules.values()
            if not runner.done() and (task_id is None or tid == task_id)
        )

    async def shutdown(self) -> None:
        runners = [runner for _, runner in self._schedules.values()]
        self._schedules.clear()
        self._producers.clear()
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)

    async def create_checkpoint(
        self,
        task_id: str,
        trigger: CheckpointTrigger = CheckpointTrigger.MANUAL,
        *,
        error: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> Optional[Checkpoint]:
        producer = self._producers.get(task_id)
        if producer is None:
            return None
        try:
            state = producer(task_id)
            if state is None:
                return None
            checkpoint = Checkpoint(
                id=uuid.uuid4().hex,
                task_id=task_id,
                trigger=trigger,
                state=state,
                error=error,
                metadata=dict(metadata or {}),
            )
            await self.sink.save(checkpoint)
        except Exception:
            LOGGER.exception("Failed to write %s checkpoint for task %s", trigger.value, task_id)
            return None
        LOGGER.debug("Checkpoint %s (%s) written for task %s", checkpoint.id, trigger.value, task_id)
        return checkpoint

    async def create_error_checkpoint(self, task_id: str, error: BaseException) -> Optional[Checkpoint]:
        return await self.create_checkpoint(
            task_id,
            CheckpointTrigger.ERROR,
            error=str(error) or error.__class__.__name__,
            metadata={"exception": error.__class__.__name__},
        )

    async def create_delegation_checkpoint(
        self,
        task_id: str,
        agent: str,
        phase: str,
        **metadata: Any,
    ) -> Optional[Checkpoint]:
        return await self.create_checkpoint(
            task_id,
            CheckpointTrigger.DELEGATION,
            metadata={"agent": agent, "phase": phase, **metadata},
        )

    async def create_subtask_checkpoint(
        self,
        task_id: str,
        step_index: int,
        **metadata: Any,
    ) -> Optional[Checkpoint]:
        return await self.create_checkpoint(
            task_id,
            CheckpointTrigger.SUBTASK,
            metadata={"step": step_index, **metadata},
        )

    async def _tick(self, task_id: str, period: float) -> None:
        while True:
            await self._sleep(period)
            await self.create_checkpoint(task_id, CheckpointTrigger.INTERVAL)
