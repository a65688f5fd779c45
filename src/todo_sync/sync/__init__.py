"""Task sync between dated Markdown notes and Microsoft To Do.

Public API for reconciling checkbox tasks in daily notes with a remote
task list.

Architecture
------------
Each run is a stateless three-phase pipeline over two collaborators (the
remote task list and the note folder). The only state kept between runs is
the identity mapping ``(note date, normalized title) -> remote id``.

Modules:

- ``engine``     -- ``Reconciler``: runs Phase A, B and C.
- ``task_text``  -- checkbox grammar, title normalization, section scoping.
- ``identity``   -- ``IdentityStore``: persistent bidirectional mapping.
- ``matcher``    -- ``DuplicateMatcher``: title fallback for unmapped tasks.
- ``storage``    -- ``JsonFileStore`` / ``MemoryStore`` persistence.
- ``ports``      -- Protocols the engine consumes.
- ``models``     -- ``LocalTask``, ``RemoteTask``, ``SyncResult`` and friends.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from todo_sync.notes import DailyNoteManager
    from todo_sync.sync import IdentityStore, JsonFileStore, Reconciler
    from todo_sync.sync import format_sync_report

    reconciler = Reconciler(
        remote=graph_client,                # GraphTodoClient instance
        notes=DailyNoteManager(Path("~/Notes").expanduser()),
        identity=IdentityStore(JsonFileStore(Path(".todo_sync"))),
        list_id=list_id,
    )

    # Dry-run first to preview changes
    print(format_sync_report(reconciler.run(dry_run=True)))

    # Execute the sync
    print(format_sync_report(reconciler.run()))
"""

from .engine import Reconciler
from .identity import IdentityStore
from .matcher import DuplicateMatcher
from .models import (
    CompletionResult,
    IdentityRecord,
    LocalTask,
    PhaseResult,
    RemoteTask,
    SyncResult,
    TaskMatch,
    TaskStatus,
)
from .reporter import format_status, format_sync_report, report_to_json
from .storage import JsonFileStore, MemoryStore

__all__ = [
    "CompletionResult",
    "DuplicateMatcher",
    "IdentityRecord",
    "IdentityStore",
    "JsonFileStore",
    "LocalTask",
    "MemoryStore",
    "PhaseResult",
    "Reconciler",
    "RemoteTask",
    "SyncResult",
    "TaskMatch",
    "TaskStatus",
    "format_status",
    "format_sync_report",
    "report_to_json",
]
