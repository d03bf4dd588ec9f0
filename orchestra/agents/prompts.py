"""Prompt text shared by the agents."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Mapping, Optional

ORCHESTRATOR_SYSTEM_PROMPT = """You are the orchestrator of a team of specialist agents.
You never do the specialists' work yourself. For every user task pick exactly one action:

- delegate_to_agent: one specialist can handle the whole task.
- create_subtasks: the task needs several specialists; give each subtask an agent,
  a description and the indices of the subtasks it depends on.
- complete_task: the task is already done or needs no work.
- ask_user: the task is ambiguous and you need more information.
- Answer in plain text without calling a tool only for simple questions you can
  answer directly.

Call at most one of these tools per reply."""


def describe_agents(agents: Iterable[Mapping[str, Any]]) -> str:
    lines = []
    for info in agents:
        lines.append(f"### {info['name']} ({info.get('status', 'idle')})")
        if info.get("description"):
            lines.append(info["description"])
        if info.get("capabilities"):
            lines.append("Capabilities: " + ", ".join(info["capabilities"]))
        if info.get("limitations"):
            lines.append("Limitations: " + ", ".join(info["limitations"]))
        lines.append("")
    return "\n".join(lines).strip() or "(no agents registered)"


def build_analysis_prompt(
    prompt: str,
    agents: Iterable[Mapping[str, Any]],
    context: Optional[Dict[str, Any]] = None,
) -> str:
    sections = ["## Available agents", describe_agents(agents), "", "## User task", prompt]
    if context:
        sections += ["", "## Context", json.dumps(context, indent=2, default=str, ensure_ascii=False)]
    sections += ["", "Decide how to handle this task."]
    return "\n".join(sections)


def iteration_reminder(iteration: int, max_iterations: int) -> str:
    remaining = max_iterations - iteration
    if remaining <= 2:
        urgency = "CRITICAL"
    elif remaining <= 4:
        urgency = "IMPORTANT"
    else:
        urgency = "Reminder"

    lines = [f"[SYSTEM - {urgency}] Iteration {iteration}/{max_iterations}"]
    if remaining <= 2:
        lines.append("LAST ITERATIONS: you MUST finish NOW.")
    if remaining <= 4:
        lines.append("Approaching the iteration limit. Wrap up your task.")
    lines += [
        "",
        "REMINDER:",
        "- If the requested task is DONE, return the final result IMMEDIATELY",
        "- Do NOT start a new analysis, review or improvement pass",
        "- Do NOT repeat a cycle you already completed",
        "- Stay focused on what was originally asked",
    ]
    return "\n".join(lines)


def frame_task(prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
    if not context:
        return prompt
    return f"Context: {json.dumps(context, default=str, ensure_ascii=False)}\n\n{prompt}"
