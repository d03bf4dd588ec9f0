"""Turn a decomposition decision into a dependency-ordered execution plan."""

from __future__ import annotations

from collections import deque
from typing import Any, Dict, List, Sequence

from orchestra.schemas.decisions import Decompose
from orchestra.schemas.messages import Task
from orchestra.schemas.plan import ExecutionPlan, Step
from orchestra.utils.errors import InvalidPlanError


def compute_levels(dependencies: Sequence[Sequence[int]]) -> List[int]:
    """Dependency depth of every step (Kahn's algorithm).

    A step's level is one more than the deepest step it depends on, so all
    steps of one level can run together once the previous levels are done.
    Raises ``InvalidPlanError`` on out-of-range indices, self references and
    cycles.
    """

    count = len(dependencies)
    dependents: List[List[int]] = [[] for _ in range(count)]
    indegree = [0] * count
    for index, deps in enumerate(dependencies):
        for dep in set(deps):
            if not isinstance(dep, int) or isinstance(dep, bool) or not 0 <= dep < count:
                raise InvalidPlanError(f"Step {index} depends on unknown step {dep!r}")
            if dep == index:
                raise InvalidPlanError(f"Step {index} depends on itself")
            dependents[dep].append(index)
            indegree[index] += 1

    levels = [0] * count
    ready = deque(i for i in range(count) if indegree[i] == 0)
    visited = 0
    while ready:
        current = ready.popleft()
        visited += 1
        for nxt in dependents[current]:
            levels[nxt] = max(levels[nxt], levels[current] + 1)
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                ready.append(nxt)

    if visited != count:
        stuck = [i for i in range(count) if indegree[i] > 0]
        raise InvalidPlanError(f"Dependency cycle between steps {stuck}")
    return levels


def build_plan(decision: Decompose, parent: Task, step_timeout: float | None = None) -> ExecutionPlan:
    levels = compute_levels([spec.depends_on for spec in decision.subtasks])
    depth = parent.decomposition_depth + 1
    steps = []
    for index, spec in enumerate(decision.subtasks):
        metadata: Dict[str, Any] = {
            "parent_task_id": parent.id,
            "decomposition_depth": depth,
            "step_index": index,
            "source": "orchestrator",
        }
        child = Task(
            id=f"{parent.id}-step-{index}",
            prompt=spec.prompt,
            context=dict(parent.context) if parent.context else None,
            timeout=step_timeout,
            agent=spec.agent,
            metadata=metadata,
        )
        steps.append(
            Step(
                index=index,
                task=child,
                agent=spec.agent,
                depends_on=tuple(sorted(set(spec.depends_on))),
                optional=spec.optional,
                level=levels[index],
            )
        )
    return ExecutionPlan(id=f"plan-{parent.id}", steps=steps, reasoning=decision.reasoning)
