"""MCP tool handlers for note/task sync.

Defines three tools:

- ``todo_sync`` -- run a full sync (with optional dry-run).
- ``todo_sync_status`` -- identity store summary and the last run.
- ``todo_identity_prune`` -- drop identity records older than N days.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.engine import Reconciler
from ...sync.reporter import format_status, format_sync_report, report_to_json
from .errors import build_error_response
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="todo_sync",
        description=(
            "Synchronize checkbox tasks in dated notes with Microsoft To Do: "
            "new remote tasks are added to notes, new note tasks are created "
            "remotely, and completions are propagated both ways."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview changes without applying them",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="todo_sync_status",
        description=(
            "Show how many tasks are linked between notes and Microsoft To Do "
            "and the outcome of the last sync."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="todo_identity_prune",
        description=(
            "Forget note/task links that have not been synced for the given "
            "number of days. Tasks themselves are not touched."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "older_than_days": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Drop records last synced more than this many days ago",
                },
            },
            "required": ["older_than_days"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_sync_tool(
    name: str,
    arguments: dict[str, Any] | None,
    reconciler: Reconciler,
) -> types.CallToolResult:
    """Dispatch and execute a sync tool.

    Errors propagate to ``ToolRegistry.call_tool``, which translates them.
    """
    args = arguments or {}

    match name:
        case "todo_sync":
            return await _handle_todo_sync(reconciler, args)
        case "todo_sync_status":
            return await _handle_todo_sync_status(reconciler, args)
        case "todo_identity_prune":
            return await _handle_identity_prune(reconciler, args)
        case _:
            raise ValueError(f"Unknown sync tool: {name}")


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_todo_sync(
    reconciler: Reconciler,
    args: dict[str, Any],
) -> types.CallToolResult:
    dry_run = args.get("dry_run", False)
    if not isinstance(dry_run, bool):
        raise ValueError("dry_run must be a boolean")

    result = await run_sync(reconciler.run, dry_run=dry_run)

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_sync_report(result))],
        structuredContent=report_to_json(result),
    )


async def _handle_todo_sync_status(
    reconciler: Reconciler,
    args: dict[str, Any],
) -> types.CallToolResult:
    records = reconciler.identity.records()
    last = reconciler.last_result
    text = format_status(records, last, running=reconciler.is_running)

    structured = {
        "identityRecords": len(records),
        "datesTracked": len({r.note_date for r in records}),
        "running": reconciler.is_running,
        "lastSync": last.timestamp if last else None,
        "lastResult": report_to_json(last) if last else None,
    }
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


async def _handle_identity_prune(
    reconciler: Reconciler,
    args: dict[str, Any],
) -> types.CallToolResult:
    days = args.get("older_than_days")
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        return build_error_response(
            "validation_error",
            "older_than_days must be a positive integer",
            "Provide 'older_than_days', e.g. 90.",
        )
    cutoff = date.today() - timedelta(days=days)
    removed = await run_sync(reconciler.identity.prune, cutoff)
    logger.info("Pruned %d identity records before %s", removed, cutoff)

    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Removed {removed} identity records last synced before {cutoff.isoformat()}.",
            )
        ],
        structuredContent={"removed": removed, "cutoff": cutoff.isoformat()},
    )


# ---------------------------------------------------------------------------
# ToolSpec list for registry-based dispatch
# ---------------------------------------------------------------------------


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({"SYNC_RUN"}),
        handler=_handle_todo_sync,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({"SYNC_VIEW"}),
        handler=_handle_todo_sync_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({"IDENTITY_ADMIN"}),
        handler=_handle_identity_prune,
    ),
]
