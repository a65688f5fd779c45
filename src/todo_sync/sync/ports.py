"""Interfaces the reconciler consumes.

The engine only ever talks to these capability sets, so tests can hand in
small fakes and production wiring can hand in ``GraphTodoClient`` and
``DailyNoteManager``.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .models import LocalTask, RemoteTask


@runtime_checkable
class RemoteTaskService(Protocol):
    """Hosted task list (Microsoft To Do)."""

    def get_tasks(self, list_id: str | None = None) -> list[RemoteTask]: ...

    def create_task(self, list_id: str, title: str) -> RemoteTask: ...

    def create_task_with_start_date(
        self, list_id: str, title: str, start_date: date
    ) -> RemoteTask: ...

    def complete_task(self, list_id: str, task_id: str) -> None: ...

    def update_task_title(
        self, list_id: str, task_id: str, title: str
    ) -> None: ...

    def get_default_list_id(self) -> str | None: ...


@runtime_checkable
class LocalNoteService(Protocol):
    """Folder of dated Markdown notes."""

    def ensure_today_note_exists(self) -> Path: ...

    def get_today_note_path(self) -> Path: ...

    def get_note_path(self, note_date: date) -> Path: ...

    def create_daily_note(self, note_date: date) -> Path: ...

    def get_daily_note_tasks(self, path: Path) -> list[LocalTask]: ...

    def get_all_daily_note_tasks(self) -> list[LocalTask]: ...

    def list_note_dates(self) -> set[date]: ...

    def add_task_to_todo_section(
        self, path: Path, title: str, remote_id: str | None = None
    ) -> None: ...

    def update_task_completion(
        self,
        path: Path,
        line_number: int,
        completed: bool,
        completion_date: date | None = None,
    ) -> None: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Generic load/save persistence for small JSON-able payloads."""

    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...
