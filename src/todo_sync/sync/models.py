"""Pydantic models for the task sync engine.

Defines the core data contracts used across all sync modules:

- ``LocalTask``: One checkbox line parsed out of a dated note.
- ``RemoteTask``: One Microsoft To Do task, built from a Graph payload.
- ``IdentityRecord``: One ``(date, normalized title) -> remote id`` link.
- ``TaskMatch``: A local/remote pair found by the duplicate matcher.
- ``PhaseResult`` / ``CompletionResult``: Per-phase counters and errors.
- ``SyncResult``: Aggregate outcome of a full run.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from ..errors import ValidationError

logger = logging.getLogger(__name__)

# Graph sends 7 fractional digits; datetime accepts at most 6
_EXTRA_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class TaskStatus(str, Enum):
    """Microsoft To Do task status values."""

    NOT_STARTED = "notStarted"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    WAITING_ON_OTHERS = "waitingOnOthers"
    DEFERRED = "deferred"


# ------------------------------------------------------------------
# Graph timestamp handling
# ------------------------------------------------------------------


def parse_graph_datetime(value: Any) -> datetime | None:
    """Parse a Graph timestamp into an aware UTC datetime.

    Graph sends either an ISO string (``createdDateTime``) or a
    ``{"dateTime": ..., "timeZone": ...}`` object (``dueDateTime``,
    sometimes ``completedDateTime``). A timestamp without an offset is
    read in the object's ``timeZone`` when that names an IANA zone, and
    as UTC otherwise.

    Returns:
        The parsed datetime, or ``None`` for missing, empty, or
        unparseable input.
    """
    zone = timezone.utc
    if isinstance(value, dict):
        zone = _graph_zone(value.get("timeZone"))
        value = value.get("dateTime")
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _EXTRA_FRACTION_RE.sub(r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable Graph timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(timezone.utc)


def _graph_zone(name: Any) -> timezone | ZoneInfo:
    if not isinstance(name, str) or name.strip().upper() in ("", "UTC"):
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        # Windows zone names such as "Tokyo Standard Time"
        logger.debug("Unknown Graph time zone %r, assuming UTC", name)
        return timezone.utc


# ------------------------------------------------------------------
# Task records
# ------------------------------------------------------------------


class LocalTask(BaseModel):
    """A checkbox task read from a dated note.

    Attributes:
        note_date: Date of the note the task lives in.
        title: Display title; annotations are stripped but an internal
            tracking tag is kept.
        completed: Whether the checkbox is ticked.
        completion_date: Date from a completion annotation, if any.
        due_date: Date from a due annotation, if any.
        file_path: Path of the note file.
        line_number: Zero-based line index within the note.
        indent: Leading whitespace of the line.
    """

    note_date: date
    title: str
    completed: bool = False
    completion_date: date | None = None
    due_date: date | None = None
    file_path: str = ""
    line_number: int = Field(default=0, ge=0)
    indent: str = ""

    model_config = {"frozen": True}


class RemoteTask(BaseModel):
    """A task on the Microsoft To Do side.

    Attributes:
        id: Opaque Graph task id.
        title: Task title as stored remotely.
        status: Graph status value.
        created_at: Creation timestamp (UTC).
        completed_at: Completion timestamp (UTC), set by the service.
        due_at: Due timestamp (UTC).
    """

    id: str
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    created_at: datetime | None = None
    completed_at: datetime | None = None
    due_at: datetime | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_graph(cls, payload: dict[str, Any]) -> RemoteTask:
        """Build a ``RemoteTask`` from a Graph ``todoTask`` resource."""
        raw_status = payload.get("status") or TaskStatus.NOT_STARTED.value
        try:
            status = TaskStatus(raw_status)
        except ValueError:
            logger.debug(
                "Unknown task status %r on %s, treating as notStarted",
                raw_status,
                payload.get("id"),
            )
            status = TaskStatus.NOT_STARTED
        return cls(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            status=status,
            created_at=parse_graph_datetime(payload.get("createdDateTime")),
            completed_at=parse_graph_datetime(
                payload.get("completedDateTime")
            ),
            due_at=parse_graph_datetime(payload.get("dueDateTime")),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def target_date(self) -> date:
        """Date of the note this task belongs in: due date, else creation date.

        The due date is the calendar day in the local time zone, since Graph
        stores a due day as midnight of that day converted to UTC. The
        creation date is the UTC calendar day.

        Raises:
            ValidationError: If the task carries neither timestamp.
        """
        if self.due_at is not None:
            return self.due_at.astimezone().date()
        if self.created_at is not None:
            return self.created_at.date()
        raise ValidationError(
            f"Task {self.id} has neither a due date nor a creation date"
        )

    def completion_date(self, today: date | None = None) -> date:
        """Date component of ``completed_at``, falling back to *today*."""
        if self.completed_at is not None:
            return self.completed_at.date()
        return today or datetime.now(timezone.utc).date()


class IdentityRecord(BaseModel):
    """Durable link between a local task key and a remote task id."""

    note_date: date
    normalized_title: str
    remote_id: str
    last_synced: datetime

    model_config = {"frozen": True}


class TaskMatch(BaseModel):
    """A local task paired with a remote task by normalized title."""

    local: LocalTask
    remote: RemoteTask
    confidence: float = 1.0

    model_config = {"frozen": True}


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


class PhaseResult(BaseModel):
    """Outcome of a creation phase (remote->local or local->remote)."""

    added: int = 0
    errors: list[str] = []

    model_config = {"frozen": True}


class CompletionResult(BaseModel):
    """Outcome of the completion propagation phase."""

    completed: int = 0
    errors: list[str] = []

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Aggregate result for a full sync run.

    Serialises with ``by_alias=True`` to the camelCase layout consumed by
    existing tooling (``msftToObsidian``, ``obsidianToMsft``, ...).

    Attributes:
        msft_to_obsidian: Remote-to-local creation counts.
        obsidian_to_msft: Local-to-remote creation counts.
        completions: Completion propagation counts.
        timestamp: ISO 8601 timestamp taken when the run finished.
        dry_run: Whether no changes were applied.
        pruned: Identity records dropped by the retention sweep.
    """

    msft_to_obsidian: PhaseResult = Field(
        default_factory=PhaseResult, alias="msftToObsidian"
    )
    obsidian_to_msft: PhaseResult = Field(
        default_factory=PhaseResult, alias="obsidianToMsft"
    )
    completions: CompletionResult = Field(default_factory=CompletionResult)
    timestamp: str
    dry_run: bool = Field(default=False, alias="dryRun")
    pruned: int = 0

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def errors(self) -> list[str]:
        """All error messages across the three phases, in phase order."""
        return (
            self.msft_to_obsidian.errors
            + self.obsidian_to_msft.errors
            + self.completions.errors
        )

    @property
    def has_changes(self) -> bool:
        return bool(
            self.msft_to_obsidian.added
            or self.obsidian_to_msft.added
            or self.completions.completed
        )

    def summary(self) -> str:
        """Format a human-readable summary of the sync run.

        Returns:
            Multi-line summary string with counts per phase.
        """
        lines = [
            f"Sync result at {self.timestamp}"
            + (" (dry run)" if self.dry_run else ""),
            f"  Remote -> notes: {self.msft_to_obsidian.added}",
            f"  Notes -> remote: {self.obsidian_to_msft.added}",
            f"  Completions:     {self.completions.completed}",
            f"  Errors:          {len(self.errors)}",
        ]
        return "\n".join(lines)
