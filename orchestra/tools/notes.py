"""Shared scratchpad that lets specialists pass short notes to each other."""

from __future__ import annotations

from typing import List

from langchain_core.tools import tool

from orchestra.tools.base import LangChainTool, Tool


class NoteBook:
    def __init__(self) -> None:
        self._notes: List[str] = []

    def add(self, note: str) -> int:
        self._notes.append(note)
        return len(self._notes)

    def recent(self, limit: int = 0) -> List[str]:
        return list(self._notes[-limit:]) if limit > 0 else list(self._notes)

    def reset(self) -> None:
        self._notes.clear()

    def __len__(self) -> int:
        return len(self._notes)


def note_tools(notebook: NoteBook) -> List[Tool]:
    @tool
    def save_note(note: str) -> str:
        """Append a short note to a shared note list accessible by all agents."""
        count = notebook.add(note)
        return f"Saved. Notes now have {count} entries."

    @tool
    def read_notes(limit: int = 0) -> str:
        """Read the shared notes, newest last; limit=0 returns all of them."""
        return "\n".join(f"- {n}" for n in notebook.recent(limit)) or "(no notes yet)"

    return [LangChainTool(save_note, category="memory"), LangChainTool(read_notes, category="memory")]
