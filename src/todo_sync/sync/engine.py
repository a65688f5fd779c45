"""Three-phase reconciler between dated notes and a remote task list.

The ``Reconciler`` ties together the note service, the remote task service,
the identity store and the duplicate matcher into one sync run:

1. Ensures today's note exists.
2. Optionally tidies identity records against the notes on disk.
3. Phase A: incomplete remote tasks not yet represented locally are
   appended to the note for their due (else creation) date.
4. Phase B: incomplete local tasks without an identity record are matched
   to an existing remote task by title, or created remotely.
5. Phase C: completion is propagated in both directions, never reverted.
6. Identity records past the retention window are pruned.

Every creation is followed at once by its identity upsert, so an aborted
run leaves nothing that the next run would duplicate. Per-task failures
are collected into the phase's error list; only failing to read a full
snapshot from either side aborts the run.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

from ..errors import SyncAbortedError, SyncCancelledError, SyncInProgressError
from .identity import IdentityStore
from .matcher import DuplicateMatcher
from .models import (
    CompletionResult,
    LocalTask,
    PhaseResult,
    RemoteTask,
    SyncResult,
)
from .ports import LocalNoteService, RemoteTaskService
from .task_text import (
    comparison_key,
    has_tracking_tag,
    normalize_title,
    strip_tracking_tag,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class Reconciler:
    """Run sync passes between a ``LocalNoteService`` and a ``RemoteTaskService``.

    Args:
        remote: Remote task collaborator.
        notes: Local note collaborator.
        identity: Identity store; the only state kept between runs.
        list_id: Remote list to sync; ``None`` uses the remote default.
        max_parallel_requests: Worker count for remote creations and
            completions.
        retention_days: Prune identity records older than this after a
            run; ``0`` disables pruning.
        clean_remote_titles: Strip tracking tags from remote titles.
        reconcile_identities: Drop records for dates without a note and
            follow single unambiguous renames before syncing.
        log: Logger to report through; defaults to the module logger.
    """

    def __init__(
        self,
        remote: RemoteTaskService,
        notes: LocalNoteService,
        identity: IdentityStore,
        list_id: str | None = None,
        max_parallel_requests: int = 4,
        retention_days: int = 90,
        clean_remote_titles: bool = False,
        reconcile_identities: bool = False,
        log: logging.Logger | None = None,
    ) -> None:
        if max_parallel_requests < 1:
            raise ValueError("max_parallel_requests must be at least 1")
        self.remote = remote
        self.notes = notes
        self.identity = identity
        self.list_id = list_id
        self.max_parallel_requests = max_parallel_requests
        self.retention_days = retention_days
        self.clean_remote_titles = clean_remote_titles
        self.reconcile_identities = reconcile_identities
        self._log = log or logger

        self._run_lock = threading.Lock()
        self._cancelled = threading.Event()
        self.last_result: SyncResult | None = None

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> None:
        """Ask the current run to stop before its next per-task operation."""
        if self.is_running:
            self._log.info("Cancellation requested")
        self._cancelled.set()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise SyncCancelledError("Sync cancelled")

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._run_lock.acquire(blocking=False):
            raise SyncInProgressError("A sync run is already in progress")
        self._cancelled.clear()
        try:
            yield
        finally:
            try:
                self.identity.flush()
            finally:
                self._run_lock.release()

    def _resolve_list_id(self) -> str:
        list_id = self.list_id or self.remote.get_default_list_id()
        if not list_id:
            raise SyncAbortedError("No remote task list configured")
        return list_id

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _remote_snapshot(self, list_id: str) -> list[RemoteTask]:
        try:
            return self.remote.get_tasks(list_id)
        except Exception as exc:
            self._log.error("Failed to fetch remote tasks: %s", exc)
            raise SyncAbortedError(
                f"Failed to fetch remote tasks: {_describe(exc)}"
            ) from exc

    def _local_snapshot(self) -> list[LocalTask]:
        try:
            return self.notes.get_all_daily_note_tasks()
        except Exception as exc:
            self._log.error("Failed to read daily notes: %s", exc)
            raise SyncAbortedError(
                f"Failed to read daily notes: {_describe(exc)}"
            ) from exc

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncResult:
        """Execute Phase A, B and C in order.

        Args:
            dry_run: Decide every action but mutate nothing.

        Returns:
            Merged ``SyncResult``; also kept as ``last_result``.

        Raises:
            SyncInProgressError: If another run holds this reconciler.
            SyncAbortedError: If either side's snapshot cannot be read.
            SyncCancelledError: If ``cancel()`` was called mid-run.
        """
        with self._exclusive():
            self._log.info("Starting full sync%s", " (dry run)" if dry_run else "")
            if not dry_run:
                try:
                    self.notes.ensure_today_note_exists()
                except Exception as exc:
                    raise SyncAbortedError(
                        f"Failed to create today's note: {_describe(exc)}"
                    ) from exc
            if self.reconcile_identities:
                self._reconcile_identities(dry_run)

            remote_to_local = self._sync_remote_to_local(dry_run)
            local_to_remote = self._sync_local_to_remote(dry_run)
            completions = self._sync_completions(dry_run)

            pruned = 0
            if self.retention_days > 0 and not dry_run:
                cutoff = date.today() - timedelta(days=self.retention_days)
                pruned = self.identity.prune(cutoff)

            result = SyncResult(
                msft_to_obsidian=remote_to_local,
                obsidian_to_msft=local_to_remote,
                completions=completions,
                timestamp=datetime.now(timezone.utc).isoformat(),
                dry_run=dry_run,
                pruned=pruned,
            )
            self._log.info(
                "Sync finished: %d added locally, %d added remotely, "
                "%d completed, %d errors",
                remote_to_local.added,
                local_to_remote.added,
                completions.completed,
                len(result.errors),
            )
            self.last_result = result
            return result

    def sync_remote_to_local(self, dry_run: bool = False) -> PhaseResult:
        with self._exclusive():
            return self._sync_remote_to_local(dry_run)

    def sync_local_to_remote(self, dry_run: bool = False) -> PhaseResult:
        with self._exclusive():
            return self._sync_local_to_remote(dry_run)

    def sync_completions(self, dry_run: bool = False) -> CompletionResult:
        with self._exclusive():
            return self._sync_completions(dry_run)

    # ------------------------------------------------------------------
    # Phase A: remote -> local
    # ------------------------------------------------------------------

    def _sync_remote_to_local(self, dry_run: bool) -> PhaseResult:
        """Append open, unmapped remote tasks to the note of their target date.

        A remote task is skipped when its target note already holds a task
        with the same title. Titles are compared by ``comparison_key``, so
        "Buy Milk" and "buy milk" count as the same task; only the
        case-preserving ``normalize_title`` is stored as the identity key.
        """
        self._log.info("Syncing remote tasks to notes")
        list_id = self._resolve_list_id()
        remote_tasks = self._remote_snapshot(list_id)
        local_tasks = self._local_snapshot()

        if self.clean_remote_titles and not dry_run:
            remote_tasks = self._clean_remote_titles(list_id, remote_tasks)

        present: dict[date, set[str]] = defaultdict(set)
        for task in local_tasks:
            present[task.note_date].add(comparison_key(task.title))

        added = 0
        errors: list[str] = []
        for remote in remote_tasks:
            if remote.is_completed:
                continue
            self._check_cancelled()
            if self.identity.lookup_by_remote_id(remote.id) is not None:
                continue
            try:
                target = remote.target_date
                title = normalize_title(remote.title)
                if not title:
                    self._log.debug("Skipping untitled remote task %s", remote.id)
                    continue
                key = comparison_key(title)
                if key in present[target]:
                    continue
                if not dry_run:
                    path = self.notes.get_note_path(target)
                    self.notes.create_daily_note(target)
                    self.notes.add_task_to_todo_section(path, title)
                    self.identity.upsert(target, title, remote.id)
                present[target].add(key)
                added += 1
                self._log.debug("Added %r to note %s", title, target)
            except Exception as exc:
                errors.append(f'Failed to add task "{remote.title}": {_describe(exc)}')
                self._log.error(
                    "Failed to add remote task %s to notes: %s", remote.id, exc
                )

        self._log.info(
            "Remote to notes: %d added, %d errors", added, len(errors)
        )
        return PhaseResult(added=added, errors=errors)

    def _clean_remote_titles(
        self, list_id: str, remote_tasks: list[RemoteTask]
    ) -> list[RemoteTask]:
        """Strip tracking tags from remote titles. Failures are only logged."""
        cleaned: list[RemoteTask] = []
        for remote in remote_tasks:
            if not has_tracking_tag(remote.title):
                cleaned.append(remote)
                continue
            new_title = strip_tracking_tag(remote.title)
            try:
                self.remote.update_task_title(list_id, remote.id, new_title)
            except Exception as exc:
                self._log.warning(
                    "Failed to clean title of remote task %s: %s", remote.id, exc
                )
                cleaned.append(remote)
                continue
            cleaned.append(remote.model_copy(update={"title": new_title}))
        return cleaned

    # ------------------------------------------------------------------
    # Phase B: local -> remote
    # ------------------------------------------------------------------

    def _sync_local_to_remote(self, dry_run: bool) -> PhaseResult:
        self._log.info("Syncing note tasks to remote")
        list_id = self._resolve_list_id()
        local_tasks = [t for t in self._local_snapshot() if not t.completed]
        remote_tasks = self._remote_snapshot(list_id)
        matcher = DuplicateMatcher(self.identity, remote_tasks)

        pending: list[LocalTask] = []
        planned: set[tuple[date, str]] = set()
        for task in local_tasks:
            self._check_cancelled()
            title = normalize_title(task.title)
            if self.identity.lookup_remote_id(task.note_date, title):
                continue
            found = matcher.match(task)
            if found is not None:
                self._log.info(
                    "Linked %r (%s) to existing remote task %s",
                    title,
                    task.note_date,
                    found.remote.id,
                )
                if not dry_run:
                    self.identity.upsert(task.note_date, title, found.remote.id)
                planned.add((task.note_date, title))
                continue
            if dry_run and (task.note_date, title) in planned:
                continue
            planned.add((task.note_date, title))
            pending.append(task)

        if dry_run:
            self._log.info("Notes to remote: %d would be created", len(pending))
            return PhaseResult(added=len(pending))

        outcomes = self._map_parallel(
            lambda task: self._create_remote(list_id, task), pending
        )
        self._check_cancelled()
        added = 0
        errors: list[str] = []
        for task, (created, error) in zip(pending, outcomes):
            if error is not None:
                errors.append(f'Failed to create remote task "{task.title}": {error}')
            elif created:
                added += 1

        self._log.info(
            "Notes to remote: %d added, %d errors", added, len(errors)
        )
        return PhaseResult(added=added, errors=errors)

    def _create_remote(self, list_id: str, task: LocalTask) -> bool:
        """Create one remote task unless its key got mapped meanwhile."""
        title = normalize_title(task.title)
        with self.identity.key_lock(task.note_date, title):
            if self.identity.lookup_remote_id(task.note_date, title):
                return False
            created = self.remote.create_task_with_start_date(
                list_id, task.title, task.note_date
            )
            self.identity.upsert(task.note_date, title, created.id)
        self._log.debug("Created remote task %s for %r", created.id, title)
        return True

    # ------------------------------------------------------------------
    # Phase C: completions
    # ------------------------------------------------------------------

    def _sync_completions(self, dry_run: bool) -> CompletionResult:
        self._log.info("Syncing completions")
        list_id = self._resolve_list_id()
        remote_tasks = self._remote_snapshot(list_id)
        local_tasks = self._local_snapshot()

        remote_by_id = {remote.id: remote for remote in remote_tasks}
        local_by_key: dict[tuple[date, str], list[LocalTask]] = defaultdict(list)
        for task in local_tasks:
            local_by_key[(task.note_date, normalize_title(task.title))].append(task)

        completed = 0
        errors: list[str] = []

        # Remote completed -> local
        for remote in remote_tasks:
            if not remote.is_completed:
                continue
            self._check_cancelled()
            record = self.identity.lookup_by_remote_id(remote.id)
            if record is None:
                continue
            targets = [
                task
                for task in local_by_key.get(
                    (record.note_date, record.normalized_title), []
                )
                if not task.completed
            ]
            for task in targets:
                try:
                    if not dry_run:
                        self.notes.update_task_completion(
                            task.file_path,
                            task.line_number,
                            True,
                            remote.completion_date(),
                        )
                    completed += 1
                except Exception as exc:
                    errors.append(
                        f'Failed to complete local task "{task.title}": {_describe(exc)}'
                    )
                    self._log.error(
                        "Failed to complete %s:%d: %s",
                        task.file_path,
                        task.line_number,
                        exc,
                    )

        # Local completed -> remote
        to_complete: list[tuple[LocalTask, str]] = []
        seen: set[str] = set()
        for task in local_tasks:
            if not task.completed:
                continue
            remote_id = self.identity.lookup_remote_id(
                task.note_date, normalize_title(task.title)
            )
            if remote_id is None or remote_id in seen:
                continue
            remote = remote_by_id.get(remote_id)
            if remote is None or remote.is_completed:
                continue
            seen.add(remote_id)
            to_complete.append((task, remote_id))

        if dry_run:
            completed += len(to_complete)
        else:
            outcomes = self._map_parallel(
                lambda item: self.remote.complete_task(list_id, item[1]),
                to_complete,
            )
            self._check_cancelled()
            for (task, _), (_, error) in zip(to_complete, outcomes):
                if error is not None:
                    errors.append(
                        f'Failed to complete remote task "{task.title}": {error}'
                    )
                else:
                    completed += 1

        self._log.info(
            "Completions: %d completed, %d errors", completed, len(errors)
        )
        return CompletionResult(completed=completed, errors=errors)

    # ------------------------------------------------------------------
    # Bounded parallel dispatch
    # ------------------------------------------------------------------

    def _map_parallel(
        self, func: Callable[[T], Any], items: list[T]
    ) -> list[tuple[Any, str | None]]:
        """Apply *func* to *items* on the worker pool.

        Returns one ``(result, error message)`` pair per item, in input
        order. Items not started before a cancellation get
        ``(None, None)``.
        """
        if not items:
            return []

        def guarded(item: T) -> tuple[Any, str | None]:
            if self._cancelled.is_set():
                return None, None
            try:
                return func(item), None
            except Exception as exc:
                self._log.error("Remote operation failed: %s", exc)
                return None, _describe(exc)

        workers = min(self.max_parallel_requests, len(items))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(guarded, items))

    # ------------------------------------------------------------------
    # Identity housekeeping
    # ------------------------------------------------------------------

    def _reconcile_identities(self, dry_run: bool) -> None:
        """Drop records for vanished notes and follow single renames.

        On a date where exactly one record lost its local task and exactly
        one local task has no record, the record is moved to the new title.
        Anything more ambiguous is left alone.
        """
        try:
            note_dates = self.notes.list_note_dates()
        except Exception as exc:
            raise SyncAbortedError(
                f"Failed to list daily notes: {_describe(exc)}"
            ) from exc
        local_tasks = self._local_snapshot()

        titles_by_date: dict[date, set[str]] = defaultdict(set)
        for task in local_tasks:
            titles_by_date[task.note_date].add(normalize_title(task.title))

        removed = renamed = 0
        record_dates = sorted({r.note_date for r in self.identity.records()})
        for note_date in record_dates:
            records = self.identity.records_for_date(note_date)
            if note_date not in note_dates:
                removed += len(records)
                if not dry_run:
                    for record in records:
                        self.identity.remove(note_date, record.normalized_title)
                continue

            titles = titles_by_date.get(note_date, set())
            mapped = {r.normalized_title for r in records}
            orphans = [r for r in records if r.normalized_title not in titles]
            unmapped = sorted(titles - mapped)
            if len(orphans) == 1 and len(unmapped) == 1:
                self._log.info(
                    "Following rename on %s: %r -> %r",
                    note_date,
                    orphans[0].normalized_title,
                    unmapped[0],
                )
                renamed += 1
                if not dry_run:
                    self.identity.rename_title(
                        note_date, orphans[0].normalized_title, unmapped[0]
                    )

        if removed or renamed:
            self._log.info(
                "Identity housekeeping: %d removed, %d renamed", removed, renamed
            )
