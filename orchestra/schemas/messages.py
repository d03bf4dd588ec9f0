from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class Task:
    """Unit of work handed to exactly one ``Agent.run`` invocation."""

    id: str
    prompt: str
    context: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None
    agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def parent_id(self) -> Optional[str]:
        return self.metadata.get("parent_task_id")

    @property
    def decomposition_depth(self) -> int:
        return int(self.metadata.get("decomposition_depth", 0))


@dataclass
class ToolCall:
    """Structured request emitted by the model to invoke a named tool."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Outcome of a ToolCall, paired with it through ``tool_call_id``."""

    tool_call_id: str
    output: Any = None
    error: Optional[str] = None
    is_error: bool = False


@dataclass
class AgentMessage:
    """Single turn in an agent's conversation."""

    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)


@dataclass
class AgentError:
    code: str
    message: str
    recoverable: bool = False
    agent: Optional[str] = None
    suggestion: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Artifact:
    kind: str
    path: Optional[str] = None
    content: Optional[str] = None
    agent: Optional[str] = None


@dataclass
class TaskMetrics:
    """Counters accumulated during one run; times are in seconds."""

    input_tokens: int = 0
    output_tokens: int = 0
    execution_time: float = 0.0
    tool_calls: int = 0
    llm_calls: int = 0
    tool_execution_time: float = 0.0

    def copy(self) -> "TaskMetrics":
        return TaskMetrics(**self.__dict__)


@dataclass
class TaskResult:
    """Terminal outcome of a task; ``run()`` always returns one of these."""

    success: bool
    output: str
    artifacts: List[Artifact] = field(default_factory=list)
    errors: List[AgentError] = field(default_factory=list)
    metrics: Optional[TaskMetrics] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: str, **kwargs: Any) -> "TaskResult":
        return cls(success=True, output=output, **kwargs)

    @classmethod
    def failure(cls, output: str, *errors: AgentError, **kwargs: Any) -> "TaskResult":
        return cls(success=False, output=output, errors=list(errors), **kwargs)
