"""Sync report formatting functions.

Human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- post-sync summary with per-phase errors.
- ``report_to_json`` -- camelCase dict for ``--json`` and MCP output.
- ``format_status`` -- identity store overview plus the last run.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import IdentityRecord, SyncResult

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(result: SyncResult) -> str:
    """Format a sync result as text.

    Error sections are only included for phases that reported errors.

    Args:
        result: The completed (or dry-run) sync result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync at {result.timestamp}"
    if result.dry_run:
        header += " (DRY RUN -- no changes made)"
    lines.append(header)
    lines.append("")

    verb = "would be " if result.dry_run else ""
    lines.append(
        f"Remote -> notes: {result.msft_to_obsidian.added} {verb}added"
    )
    lines.append(
        f"Notes -> remote: {result.obsidian_to_msft.added} {verb}added"
    )
    lines.append(
        f"Completions:     {result.completions.completed} {verb}completed"
    )
    if result.pruned:
        lines.append(f"Pruned:          {result.pruned} identity records")
    lines.append("")

    sections = [
        ("Remote -> notes errors:", result.msft_to_obsidian.errors),
        ("Notes -> remote errors:", result.obsidian_to_msft.errors),
        ("Completion errors:", result.completions.errors),
    ]
    for title, errors in sections:
        if not errors:
            continue
        lines.append(title)
        for error in errors:
            lines.append(f"  {error}")
        lines.append("")

    if not result.has_changes and not result.errors:
        lines.append("Everything is in sync.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(result: SyncResult) -> dict[str, Any]:
    """Convert a sync result to the camelCase layout.

    Adds the aggregate ``added``, ``completed`` and ``errors`` fields next
    to the per-phase blocks.
    """
    payload = result.model_dump(mode="json", by_alias=True)
    payload["added"] = (
        result.msft_to_obsidian.added + result.obsidian_to_msft.added
    )
    payload["completed"] = result.completions.completed
    payload["errors"] = result.errors
    return payload


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


def format_status(
    records: list[IdentityRecord],
    last_result: SyncResult | None = None,
    running: bool = False,
) -> str:
    """Summarise the identity store and the most recent run.

    Args:
        records: Current identity records.
        last_result: Result of the last run in this process, if any.
        running: Whether a run is currently in progress.
    """
    lines = [f"Identity records: {len(records)}"]
    if records:
        per_date = Counter(record.note_date for record in records)
        newest = max(record.last_synced for record in records)
        lines.append(
            f"Dates tracked:    {len(per_date)} "
            f"({min(per_date).isoformat()} .. {max(per_date).isoformat()})"
        )
        lines.append(f"Last synced:      {newest.isoformat()}")
    if running:
        lines.append("A sync run is in progress.")
    if last_result is None:
        lines.append("No sync has run in this session.")
    else:
        lines.append("")
        lines.append(last_result.summary())
    return "\n".join(lines)
