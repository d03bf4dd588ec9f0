"""Exception hierarchy shared by agents, tools and the orchestrator."""

from __future__ import annotations

from typing import Any, Dict, Optional

from orchestra.schemas.messages import AgentError


class OrchestraError(Exception):
    """Base exception; ``code`` is stable and ends up in ``TaskResult.errors``."""

    code = "AGENT_ERROR"
    recoverable = False

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.context = dict(context or {})


class RateLimitError(OrchestraError):
    code = "RATE_LIMITED"
    recoverable = True

    def __init__(self, message: str = "rate limit exceeded", *, retry_after: Optional[float] = None) -> None:
        super().__init__(message, context={"retry_after": retry_after} if retry_after else None)
        self.retry_after = retry_after


class TaskAbortedError(OrchestraError):
    code = "ABORTED"


class TaskTimeoutError(OrchestraError):
    code = "TIMEOUT"


class ToolNotFoundError(OrchestraError):
    code = "TOOL_NOT_FOUND"


class DependencyNotInitializedError(OrchestraError):
    code = "NOT_INITIALIZED"


class DecisionParseError(OrchestraError):
    code = "DECISION_PARSE_ERROR"
    recoverable = True


class InvalidPlanError(OrchestraError):
    code = "INVALID_PLAN"


def is_rate_limit_error(exc: BaseException) -> bool:
    """Recognise provider rate limiting regardless of which SDK raised it."""

    if isinstance(exc, RateLimitError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    return "rate limit" in str(exc).lower()


def to_agent_error(exc: BaseException, agent: Optional[str] = None) -> AgentError:
    if isinstance(exc, OrchestraError):
        return AgentError(
            code=exc.code,
            message=str(exc),
            recoverable=exc.recoverable,
            agent=agent,
            context=dict(exc.context),
        )
    if is_rate_limit_error(exc):
        return AgentError(code=RateLimitError.code, message=str(exc), recoverable=True, agent=agent)
    return AgentError(
        code="AGENT_ERROR",
        message=str(exc) or exc.__class__.__name__,
        recoverable=False,
        agent=agent,
        context={"exception": exc.__class__.__name__},
    )
