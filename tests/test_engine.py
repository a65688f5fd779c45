"""Tests for the three-phase Reconciler.

Runs against a real ``DailyNoteManager`` on a temp vault, a ``FakeRemote``
standing in for Microsoft Graph, and an ``IdentityStore`` over a
``MemoryStore``.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone

import pytest

from conftest import FakeRemote, utc
from todo_sync.errors import SyncAbortedError, SyncCancelledError, SyncInProgressError
from todo_sync.sync.engine import Reconciler
from todo_sync.sync.models import RemoteTask

D1 = date(2024, 1, 15)
D2 = date(2024, 1, 16)

NOTE = "# Daily Note\n\n## ToDo\n{tasks}\n## Notes\n\nSome text.\n"


def _note(*task_lines: str) -> str:
    return NOTE.format(tasks="\n".join(task_lines) + ("\n" if task_lines else ""))


@pytest.fixture
def make_reconciler(remote, notes, identity):
    def _make(**kwargs) -> Reconciler:
        return Reconciler(
            remote=kwargs.pop("remote", remote),
            notes=notes,
            identity=identity,
            **kwargs,
        )

    return _make


def _read(vault, note_date: date) -> str:
    return (vault / "Daily Notes" / f"{note_date.isoformat()}.md").read_text(
        encoding="utf-8"
    )


# ---------------------------------------------------------------------------
# Phase A: remote -> notes
# ---------------------------------------------------------------------------


class TestRemoteToLocal:
    def test_new_remote_task_appended_to_note(self, make_reconciler, remote, identity, vault):
        remote.add("Buy milk", task_id="r1")

        result = make_reconciler().run()

        content = _read(vault, D1)
        assert "## ToDo\n- [ ] Buy milk\n" in content
        assert identity.lookup_remote_id(D1, "Buy milk") == "r1"
        assert result.msft_to_obsidian.added == 1
        assert result.obsidian_to_msft.added == 0
        assert remote.created == []

    def test_due_date_preferred_over_creation_date(self, make_reconciler, remote, vault):
        remote.add("Pay rent", created=utc(2024, 1, 10), due=utc(2024, 2, 1))

        make_reconciler().run()

        assert "- [ ] Pay rent" in _read(vault, date(2024, 2, 1))
        assert not (vault / "Daily Notes" / "2024-01-10.md").exists()

    def test_appended_after_existing_tasks(self, make_reconciler, remote, write_note, vault):
        write_note(D1, _note("- [x] Done earlier"))
        remote.add("Buy milk")

        make_reconciler().run()

        assert "- [x] Done earlier\n- [ ] Buy milk\n" in _read(vault, D1)

    def test_completed_remote_tasks_not_added(self, make_reconciler, remote, vault):
        remote.add("Old news", completed=True)

        result = make_reconciler().run()

        assert result.msft_to_obsidian.added == 0
        assert not (vault / "Daily Notes" / "2024-01-15.md").exists()

    def test_existing_title_on_date_not_duplicated(self, make_reconciler, remote, write_note, vault):
        write_note(D1, _note("- [ ] Buy milk #errand"))
        remote.add("buy MILK")

        result = make_reconciler().run()

        assert result.msft_to_obsidian.added == 0
        assert _read(vault, D1).lower().count("milk") == 1

    def test_tracking_tag_stripped_from_appended_title(self, make_reconciler, remote, vault, identity):
        remote.add("Buy milk [todo-id:: xyz]", task_id="r1")

        make_reconciler().run()

        assert "- [ ] Buy milk\n" in _read(vault, D1)
        assert identity.lookup_remote_id(D1, "Buy milk") == "r1"

    def test_untitled_remote_task_skipped(self, make_reconciler, remote):
        remote.add("#tag")

        result = make_reconciler().run()

        assert result.msft_to_obsidian.added == 0
        assert result.errors == []

    def test_task_without_dates_reports_error(self, make_reconciler, remote):
        remote.tasks["x"] = RemoteTask(id="x", title="Orphan")
        remote.add("Buy milk")

        result = make_reconciler().run()

        assert result.msft_to_obsidian.added == 1
        assert result.msft_to_obsidian.errors == [
            'Failed to add task "Orphan": Task x has neither a due date nor a creation date'
        ]

    def test_clean_remote_titles(self, make_reconciler, remote, vault):
        remote.add("Buy milk [todo-id:: r1]", task_id="r1")

        make_reconciler(clean_remote_titles=True).run()

        assert remote.renamed == [("r1", "Buy milk")]
        assert remote.tasks["r1"].title == "Buy milk"
        assert "- [ ] Buy milk\n" in _read(vault, D1)


# ---------------------------------------------------------------------------
# Phase B: notes -> remote
# ---------------------------------------------------------------------------


class TestLocalToRemote:
    def test_new_local_task_created_remotely(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [ ] Call Bob"))

        result = make_reconciler().run()

        assert remote.created == [("list-1", "Call Bob", D1)]
        created_id = next(iter(t.id for t in remote.tasks.values()))
        assert identity.lookup_remote_id(D1, "Call Bob") == created_id
        assert result.obsidian_to_msft.added == 1
        # The fresh remote task is mapped, so Phase A does not echo it back
        assert result.msft_to_obsidian.added == 0

    def test_completed_local_task_not_created(self, make_reconciler, remote, write_note):
        write_note(D1, _note("- [x] Already done"))

        make_reconciler().run()

        assert remote.created == []

    def test_tasks_outside_section_ignored(self, make_reconciler, remote, write_note):
        write_note(D1, "# Day\n- [ ] Stray\n\n## ToDo\n- [ ] Real\n\n## Notes\n- [ ] Also stray\n")

        make_reconciler().run()

        assert [title for _, title, _ in remote.created] == ["Real"]

    def test_duplicate_matched_by_title_instead_of_created(
        self, make_reconciler, remote, identity, write_note, vault
    ):
        write_note(D1, _note("- [ ] Buy milk"))
        remote.add("BUY milk", task_id="r1")

        result = make_reconciler().run()

        assert remote.created == []
        assert identity.lookup_remote_id(D1, "Buy milk") == "r1"
        assert result.has_changes is False
        assert _read(vault, D1).count("milk") == 1

    def test_old_completed_remote_not_linked_to_new_local_task(
        self, make_reconciler, remote, identity, write_note, vault
    ):
        remote.add(
            "Call mom",
            created=utc(2023, 3, 1),
            completed=True,
            completed_at=utc(2023, 3, 2),
            task_id="old",
        )
        write_note(D1, _note("- [ ] Call mom"))

        result = make_reconciler().run()

        assert "- [ ] Call mom\n" in _read(vault, D1)
        assert "2023-03-02" not in _read(vault, D1)
        assert [(title, start) for _, title, start in remote.created] == [("Call mom", D1)]
        assert identity.lookup_remote_id(D1, "Call mom") != "old"
        assert result.completions.completed == 0

    def test_open_remote_on_other_date_not_linked(
        self, make_reconciler, remote, identity, write_note
    ):
        remote.add("Buy milk", created=utc(2024, 1, 16), task_id="r1")
        write_note(D1, _note("- [ ] Buy milk"))

        make_reconciler().run()

        assert identity.lookup_remote_id(D2, "Buy milk") == "r1"
        assert [title for _, title, _ in remote.created] == ["Buy milk"]
        assert identity.lookup_remote_id(D1, "Buy milk") not in (None, "r1")

    def test_tracking_tag_does_not_change_identity(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [ ] Buy milk [todo:: abc]"))

        reconciler = make_reconciler()
        reconciler.run()
        reconciler.run()

        assert len(remote.created) == 1
        assert identity.lookup_remote_id(D1, "Buy milk") is not None

    def test_per_task_errors_isolated(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [ ] Good", "- [ ] Bad"))
        remote.fail_create_titles = {"Bad"}

        result = make_reconciler().run()

        assert result.obsidian_to_msft.added == 1
        assert result.obsidian_to_msft.errors == [
            'Failed to create remote task "Bad": service unavailable'
        ]
        assert identity.lookup_remote_id(D1, "Good") is not None
        assert identity.lookup_remote_id(D1, "Bad") is None

    def test_same_key_created_once_in_parallel(self, make_reconciler, remote, write_note):
        write_note(D1, _note("- [ ] Buy milk", "- [ ] Buy milk", "- [ ] Buy milk"))

        result = make_reconciler(max_parallel_requests=4).run()

        assert len(remote.created) == 1
        assert result.obsidian_to_msft.added == 1
        assert result.errors == []

    def test_many_tasks_across_notes(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note(*(f"- [ ] Task {i}" for i in range(10))))
        write_note(D2, _note(*(f"- [ ] Task {i}" for i in range(10))))

        result = make_reconciler(max_parallel_requests=8).run()

        assert result.obsidian_to_msft.added == 20
        assert len({task_id for task_id in remote.tasks}) == 20
        assert len(identity) == 20


# ---------------------------------------------------------------------------
# Phase C: completions
# ---------------------------------------------------------------------------


class TestCompletions:
    def test_remote_completion_ticks_local_task(self, make_reconciler, remote, identity, write_note, vault):
        write_note(D1, _note("- [ ] Buy milk #errand"))
        identity.upsert(D1, "Buy milk", "r1")
        remote.add("Buy milk", task_id="r1", completed=True, completed_at=utc(2024, 1, 20))

        result = make_reconciler().run()

        assert "- [x] Buy milk #errand [completion:: 2024-01-20]" in _read(vault, D1)
        assert result.completions.completed == 1

    def test_local_completion_completes_remote(self, make_reconciler, remote, identity, write_note, vault):
        write_note(D1, _note("- [x] Buy milk [completion:: 2024-01-16]"))
        identity.upsert(D1, "Buy milk", "r1")
        remote.add("Buy milk", task_id="r1")

        result = make_reconciler().run()

        assert remote.completed == ["r1"]
        assert remote.tasks["r1"].is_completed
        assert result.completions.completed == 1
        # never reopened locally
        assert "- [x] Buy milk" in _read(vault, D1)

    def test_both_completed_is_noop(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [x] Buy milk"))
        identity.upsert(D1, "Buy milk", "r1")
        remote.add("Buy milk", task_id="r1", completed=True)

        result = make_reconciler().run()

        assert remote.completed == []
        assert result.completions.completed == 0

    def test_unmapped_completed_tasks_ignored(self, make_reconciler, remote, write_note):
        write_note(D1, _note("- [x] Local only"))
        remote.add("Remote only", completed=True)

        result = make_reconciler().run()

        assert result.completions.completed == 0
        assert remote.completed == []

    def test_remote_completion_failure_reported(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [x] Buy milk"))
        identity.upsert(D1, "Buy milk", "r1")
        remote.add("Buy milk", task_id="r1")
        remote.fail_complete_ids = {"r1"}

        result = make_reconciler().run()

        assert result.completions.completed == 0
        assert result.completions.errors == [
            'Failed to complete remote task "Buy milk": patch rejected'
        ]


# ---------------------------------------------------------------------------
# Whole runs
# ---------------------------------------------------------------------------


class TestFullRun:
    def test_second_run_is_a_noop(self, make_reconciler, remote, write_note, vault):
        write_note(D1, _note("- [ ] Call Bob"))
        remote.add("Buy milk")
        reconciler = make_reconciler()

        first = reconciler.run()
        content = _read(vault, D1)
        second = reconciler.run()

        assert first.has_changes
        assert not second.has_changes
        assert second.errors == []
        assert _read(vault, D1) == content
        assert len(remote.created) == 1

    def test_creates_today_note(self, make_reconciler, vault):
        make_reconciler().run()

        today = vault / "Daily Notes" / f"{date.today().isoformat()}.md"
        assert today.exists()
        assert "## ToDo" in today.read_text(encoding="utf-8")

    def test_dry_run_changes_nothing(self, make_reconciler, remote, backend, identity, write_note, vault):
        write_note(D2, _note("- [ ] Call Bob"))
        remote.add("Buy milk")

        result = make_reconciler().run(dry_run=True)

        assert result.dry_run
        assert result.msft_to_obsidian.added == 1
        assert result.obsidian_to_msft.added == 1
        assert remote.created == []
        assert len(identity) == 0
        assert backend.save_count == 0
        assert not (vault / "Daily Notes" / "2024-01-15.md").exists()
        assert not (vault / "Daily Notes" / f"{date.today().isoformat()}.md").exists()

    def test_dry_run_counts_duplicate_lines_once(self, make_reconciler, write_note):
        write_note(D1, _note("- [ ] Same", "- [ ] Same"))

        result = make_reconciler().run(dry_run=True)

        assert result.obsidian_to_msft.added == 1

    def test_remote_snapshot_failure_aborts(self, make_reconciler, remote):
        remote.fail_get = True
        reconciler = make_reconciler()

        with pytest.raises(SyncAbortedError, match="Failed to fetch remote tasks"):
            reconciler.run()
        assert not reconciler.is_running

    def test_missing_notes_folder_aborts(self, remote, identity, tmp_path):
        from todo_sync.notes import DailyNoteManager

        notes = DailyNoteManager(tmp_path, daily_notes_path="Journal")
        reconciler = Reconciler(remote, notes, identity)

        with pytest.raises(SyncAbortedError, match="Failed to read daily notes"):
            reconciler.run(dry_run=True)

    def test_missing_list_id_aborts(self, notes, identity):
        reconciler = Reconciler(FakeRemote(list_id=None), notes, identity)

        with pytest.raises(SyncAbortedError, match="No remote task list"):
            reconciler.run()

    def test_retention_prunes_stale_records(self, make_reconciler, identity):
        identity.upsert(
            date(2000, 1, 1), "Ancient", "r0",
            synced_at=datetime(2000, 1, 1, tzinfo=timezone.utc),
        )

        result = make_reconciler(retention_days=90).run()

        assert result.pruned == 1
        assert len(identity) == 0

    def test_retention_disabled(self, make_reconciler, identity):
        identity.upsert(
            date(2000, 1, 1), "Ancient", "r0",
            synced_at=datetime(2000, 1, 1, tzinfo=timezone.utc),
        )

        result = make_reconciler(retention_days=0).run()

        assert result.pruned == 0
        assert len(identity) == 1

    def test_last_result_kept(self, make_reconciler):
        reconciler = make_reconciler()
        assert reconciler.last_result is None
        result = reconciler.run()
        assert reconciler.last_result is result

    def test_invalid_parallelism_rejected(self, remote, notes, identity):
        with pytest.raises(ValueError):
            Reconciler(remote, notes, identity, max_parallel_requests=0)

    def test_single_phase_entry_points(self, make_reconciler, remote, write_note):
        write_note(D1, _note("- [ ] Call Bob"))
        reconciler = make_reconciler()

        assert reconciler.sync_local_to_remote().added == 1
        assert reconciler.sync_remote_to_local().added == 0
        assert reconciler.sync_completions().completed == 0


class TestIdentityHousekeeping:
    def test_records_for_missing_notes_dropped(self, make_reconciler, identity, write_note):
        write_note(D1, _note("- [ ] Kept"))
        identity.upsert(D1, "Kept", "r1")
        identity.upsert(D2, "Gone", "r2")

        make_reconciler(reconcile_identities=True, retention_days=0).run()

        assert identity.lookup_remote_id(D1, "Kept") == "r1"
        assert identity.lookup_by_remote_id("r2") is None

    def test_single_rename_followed(self, make_reconciler, remote, identity, write_note):
        write_note(D1, _note("- [ ] Kept", "- [ ] New title"))
        identity.upsert(D1, "Kept", "r1")
        identity.upsert(D1, "Old title", "r2")
        remote.add("Kept", task_id="r1")
        remote.add("Old title", task_id="r2")

        make_reconciler(reconcile_identities=True).run()

        assert identity.lookup_remote_id(D1, "New title") == "r2"
        assert remote.created == []

    def test_ambiguous_rename_left_alone(self, make_reconciler, identity, write_note):
        write_note(D1, _note("- [ ] New one", "- [ ] New two"))
        identity.upsert(D1, "Old title", "r2")

        make_reconciler(reconcile_identities=True, retention_days=0).run(dry_run=True)

        assert identity.lookup_remote_id(D1, "Old title") == "r2"

    def test_disabled_by_default(self, make_reconciler, identity):
        identity.upsert(D2, "Gone", "r2")

        make_reconciler(retention_days=0).run()

        assert identity.lookup_by_remote_id("r2") is not None


# ---------------------------------------------------------------------------
# Concurrency and cancellation
# ---------------------------------------------------------------------------


class BlockingRemote(FakeRemote):
    """Blocks the first snapshot until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def get_tasks(self, list_id=None):
        self.started.set()
        self.release.wait(timeout=5)
        return super().get_tasks(list_id)


class CancellingRemote(FakeRemote):
    """Cancels the reconciler from inside the first creation."""

    def __init__(self):
        super().__init__()
        self.reconciler: Reconciler | None = None

    def create_task_with_start_date(self, list_id, title, start_date):
        task = super().create_task_with_start_date(list_id, title, start_date)
        if self.reconciler is not None:
            self.reconciler.cancel()
            self.reconciler = None
        return task


class TestRunControl:
    def test_concurrent_run_rejected(self, make_reconciler):
        remote = BlockingRemote()
        reconciler = make_reconciler(remote=remote)
        worker = threading.Thread(target=reconciler.run)
        worker.start()
        try:
            assert remote.started.wait(timeout=5)
            assert reconciler.is_running
            with pytest.raises(SyncInProgressError):
                reconciler.run()
        finally:
            remote.release.set()
            worker.join(timeout=5)
        assert not reconciler.is_running

    def test_cancel_stops_between_tasks(self, make_reconciler, identity, write_note):
        write_note(D1, _note("- [ ] A", "- [ ] B", "- [ ] C"))
        remote = CancellingRemote()
        reconciler = make_reconciler(remote=remote, max_parallel_requests=1)
        remote.reconciler = reconciler

        with pytest.raises(SyncCancelledError):
            reconciler.run()

        assert [title for _, title, _ in remote.created] == ["A"]
        assert identity.lookup_remote_id(D1, "A") is not None
        assert not reconciler.is_running

        # The next run picks up where the cancelled one stopped
        result = reconciler.run()
        assert result.obsidian_to_msft.added == 2
        assert len(remote.created) == 3
