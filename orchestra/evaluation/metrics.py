from __future__ import annotations

from dataclasses import dataclass
from typing import List

from orchestra.schemas.plan import ExecutionPlan, StepStatus


@dataclass
class EvaluationResult:
    task_id: str
    success: bool
    latency: float | None = None


def success_rate(results: List[EvaluationResult]) -> float:
    if not results:
        return 0.0
    successes = sum(1 for r in results if r.success)
    return successes / len(results)


@dataclass
class ExecutionStats:
    """Summary of one executed plan; times are in seconds."""

    total: int
    successful: int
    failed: int
    skipped: int
    levels: int
    total_time: float
    sequential_time: float
    parallel_efficiency: float
    success_rate: float


def step_results(plan: ExecutionPlan) -> List[EvaluationResult]:
    return [
        EvaluationResult(task_id=step.task.id, success=step.status is StepStatus.COMPLETED, latency=step.duration)
        for step in plan.steps
    ]


def calculate_stats(plan: ExecutionPlan, total_time: float) -> ExecutionStats:
    """Parallel efficiency is the summed step time divided by the wall-clock time."""

    sequential_time = sum(step.duration for step in plan.steps)
    efficiency = round(sequential_time / total_time, 2) if total_time > 0 else 1.0
    return ExecutionStats(
        total=len(plan.steps),
        successful=sum(1 for s in plan.steps if s.status is StepStatus.COMPLETED),
        failed=sum(1 for s in plan.steps if s.status is StepStatus.FAILED),
        skipped=sum(1 for s in plan.steps if s.status is StepStatus.SKIPPED),
        levels=plan.levels,
        total_time=total_time,
        sequential_time=sequential_time,
        parallel_efficiency=efficiency,
        success_rate=success_rate(step_results(plan)),
    )
