"""Execution modes gating which tools an agent may run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Literal, Optional

LOGGER = logging.getLogger(__name__)

ExecutionMode = Literal["plan", "execute", "strict"]
MODES = ("plan", "execute", "strict")
MODIFYING_CATEGORIES: FrozenSet[str] = frozenset({"write", "shell", "git", "deploy"})


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    needs_approval: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class PendingAction:
    tool_name: str
    category: str
    params: Dict[str, Any]

    @property
    def description(self) -> str:
        return f"{self.tool_name} ({self.category})"


ApprovalHandler = Callable[[PendingAction], Awaitable[bool]]


class ExecutionModeManager:
    """``plan`` is read-only, ``execute`` allows everything, ``strict`` asks first."""

    def __init__(
        self,
        mode: ExecutionMode = "execute",
        approval_handler: ApprovalHandler | None = None,
        modifying_categories: FrozenSet[str] = MODIFYING_CATEGORIES,
    ) -> None:
        self.set_mode(mode)
        self.approval_handler = approval_handler
        self.modifying_categories = modifying_categories
        self._previous: ExecutionMode = "execute"

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown execution mode {mode!r}; expected one of {', '.join(MODES)}")
        self._mode = mode  # type: ignore[assignment]

    def enter_plan_mode(self) -> None:
        if self._mode != "plan":
            self._previous = self._mode
        self._mode = "plan"

    def exit_plan_mode(self) -> None:
        self._mode = self._previous if self._previous != "plan" else "execute"

    def is_plan_mode(self) -> bool:
        return self._mode == "plan"

    def check_permission(self, tool_name: str, category: str, params: Dict[str, Any] | None = None) -> PermissionCheck:
        modifying = category in self.modifying_categories
        if not modifying or self._mode == "execute":
            return PermissionCheck(allowed=True)
        if self._mode == "plan":
            return PermissionCheck(
                allowed=False,
                reason=f"'{tool_name}' modifies state and plan mode is read-only",
            )
        return PermissionCheck(allowed=True, needs_approval=True, reason="strict mode requires approval")

    async def authorize(self, tool_name: str, category: str, params: Dict[str, Any]) -> Optional[str]:
        """Return ``None`` when the call may proceed, else the refusal reason."""

        check = self.check_permission(tool_name, category, params)
        if not check.allowed:
            return check.reason
        if not check.needs_approval:
            return None
        if self.approval_handler is None:
            LOGGER.warning("Approval requested for %s but no approval handler is configured", tool_name)
            return f"'{tool_name}' requires approval and none was given"
        approved = await self.approval_handler(PendingAction(tool_name, category, dict(params)))
        LOGGER.info("Approval for %s: %s", tool_name, "granted" if approved else "denied")
        return None if approved else f"'{tool_name}' was denied by the user"
