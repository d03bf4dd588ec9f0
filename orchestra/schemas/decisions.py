from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class SubtaskSpec:
    agent: str
    prompt: str
    depends_on: Tuple[int, ...] = ()
    optional: bool = False


@dataclass(frozen=True)
class Delegate:
    target_agent: str
    task: str
    context: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    action: str = field(default="delegate", init=False)


@dataclass(frozen=True)
class Decompose:
    subtasks: Tuple[SubtaskSpec, ...]
    reasoning: str = "Task decomposition"
    action: str = field(default="decompose", init=False)


@dataclass(frozen=True)
class ExecuteDirectly:
    response: str
    action: str = field(default="execute_directly", init=False)


@dataclass(frozen=True)
class AskUser:
    question: str
    reason: str = ""
    action: str = field(default="ask_user", init=False)


@dataclass(frozen=True)
class Complete:
    response: str
    summary: str = ""
    artifacts: Tuple[str, ...] = ()
    action: str = field(default="complete", init=False)


Decision = Union[Delegate, Decompose, ExecuteDirectly, AskUser, Complete]
