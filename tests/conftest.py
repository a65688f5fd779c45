"""Shared pytest fixtures for todo-sync tests."""

from __future__ import annotations

import itertools
import os
import threading
import time
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from todo_sync.config import Config
from todo_sync.notes import DailyNoteManager
from todo_sync.sync.identity import IdentityStore
from todo_sync.sync.models import RemoteTask, TaskStatus
from todo_sync.sync.storage import MemoryStore


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Microsoft Graph token",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Microsoft Graph token"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        # --run-live given: do not skip live tests
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def utc(year: int, month: int, day: int, hour: int = 9) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class FakeRemote:
    """In-memory stand-in for ``GraphTodoClient``.

    Tasks live in an insertion-ordered dict. Every mutating call is
    recorded so tests can assert on exactly what was sent.
    """

    def __init__(self, tasks: list[RemoteTask] | None = None, list_id: str = "list-1"):
        self.tasks: dict[str, RemoteTask] = {t.id: t for t in tasks or []}
        self.list_id = list_id
        self.created: list[tuple[str, str, date]] = []
        self.completed: list[str] = []
        self.renamed: list[tuple[str, str]] = []
        self.fail_get = False
        self.fail_create_titles: set[str] = set()
        self.fail_complete_ids: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(
        self,
        title: str,
        created: datetime | None = None,
        due: datetime | None = None,
        completed: bool = False,
        task_id: str | None = None,
        completed_at: datetime | None = None,
    ) -> RemoteTask:
        task = RemoteTask(
            id=task_id or f"r{next(self._ids)}",
            title=title,
            status=TaskStatus.COMPLETED if completed else TaskStatus.NOT_STARTED,
            created_at=created or utc(2024, 1, 15),
            due_at=due,
            completed_at=completed_at,
        )
        self.tasks[task.id] = task
        return task

    def get_tasks(self, list_id=None):
        if self.fail_get:
            raise ConnectionError("graph unreachable")
        return list(self.tasks.values())

    def create_task(self, list_id, title):
        return self.create_task_with_start_date(list_id, title, date.today())

    def create_task_with_start_date(self, list_id, title, start_date):
        if title in self.fail_create_titles:
            raise RuntimeError("service unavailable")
        with self._lock:
            self.created.append((list_id, title, start_date))
            task = RemoteTask(
                id=f"new{next(self._ids)}",
                title=title,
                created_at=datetime.combine(
                    start_date, datetime.min.time(), tzinfo=timezone.utc
                ),
            )
            self.tasks[task.id] = task
        return task

    def complete_task(self, list_id, task_id):
        if task_id in self.fail_complete_ids:
            raise RuntimeError("patch rejected")
        with self._lock:
            self.completed.append(task_id)
            self.tasks[task_id] = self.tasks[task_id].model_copy(
                update={
                    "status": TaskStatus.COMPLETED,
                    "completed_at": datetime.now(timezone.utc),
                }
            )

    def update_task_title(self, list_id, task_id, title):
        self.renamed.append((task_id, title))
        self.tasks[task_id] = self.tasks[task_id].model_copy(
            update={"title": title}
        )

    def get_default_list_id(self):
        return self.list_id

    def validate_connection(self):
        return "user@example.com"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def set_local_zone(name: str) -> None:
    """Switch the process-local time zone (POSIX only)."""
    os.environ["TZ"] = name
    time.tzset()


@pytest.fixture(autouse=True)
def utc_local_zone():
    """Run every test with UTC as the local time zone."""
    if not hasattr(time, "tzset"):
        yield
        return
    previous = os.environ.get("TZ")
    set_local_zone("UTC")
    yield
    if previous is None:
        os.environ.pop("TZ", None)
    else:
        os.environ["TZ"] = previous
    time.tzset()


@pytest.fixture
def vault(tmp_path) -> Path:
    """Empty vault with a ``Daily Notes`` folder."""
    (tmp_path / "Daily Notes").mkdir()
    return tmp_path


@pytest.fixture
def notes(vault) -> DailyNoteManager:
    return DailyNoteManager(vault)


@pytest.fixture
def write_note(vault):
    """Factory writing ``Daily Notes/<YYYY-MM-DD>.md`` with the given body."""

    def _write(note_date: date, body: str) -> Path:
        path = vault / "Daily Notes" / f"{note_date.isoformat()}.md"
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def backend() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def identity(backend) -> IdentityStore:
    return IdentityStore(backend)


@pytest.fixture
def mock_config(vault) -> Config:
    """A valid Config pointing at the temp vault."""
    return Config(
        access_token="test-token",
        list_name="Obsidian Tasks",
        vault_path=str(vault),
    )
