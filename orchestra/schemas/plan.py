from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from orchestra.schemas.messages import Task, TaskResult


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Step:
    """One node of an execution plan: a child task bound to an agent."""

    index: int
    task: Task
    agent: str
    depends_on: Tuple[int, ...] = ()
    optional: bool = False
    level: int = 0
    status: StepStatus = StepStatus.PENDING
    result: Optional[TaskResult] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


@dataclass
class ExecutionPlan:
    id: str
    steps: List[Step] = field(default_factory=list)
    reasoning: str = ""

    @property
    def completed_count(self) -> int:
        return sum(1 for step in self.steps if step.status is StepStatus.COMPLETED)

    @property
    def progress(self) -> float:
        if not self.steps:
            return 0.0
        return self.completed_count / len(self.steps)

    @property
    def levels(self) -> int:
        if not self.steps:
            return 0
        return max(step.level for step in self.steps) + 1
