"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.
"""

import mcp.types as types

from ...errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    OutOfRangeError,
    RemoteApiError,
    SyncAbortedError,
    SyncCancelledError,
    SyncInProgressError,
    TodoSyncError,
    ValidationError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, auth_error, rate_limited,
            sync_in_progress, validation_error, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("sync_in_progress", "A sync run is already in progress", "Wait and retry.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# Graph error kind -> (error_type, corrective action)
_REMOTE_KIND_MESSAGES: dict[str, tuple[str, str]] = {
    "auth": (
        "auth_error",
        "Refresh TODO_ACCESS_TOKEN (Tasks.ReadWrite scope) and restart the server.",
    ),
    "rate_limit": (
        "rate_limited",
        "Microsoft Graph is throttling requests. Wait a minute, then retry.",
    ),
    "not_found": (
        "not_found",
        "Check that the configured task list still exists (TODO_LIST_NAME / TODO_LIST_ID).",
    ),
    "server": (
        "server_error",
        "Microsoft Graph reported a server error. Retry later.",
    ),
    "unknown": (
        "server_error",
        "Check the server log for the full Graph response, then retry.",
    ),
}


def translate_sync_error(error: TodoSyncError) -> types.CallToolResult:
    """Translate a ``TodoSyncError`` into a structured error response."""
    message = str(error)
    match error:
        case SyncInProgressError():
            return build_error_response(
                "sync_in_progress",
                message,
                "Wait for the running sync to finish, then retry.",
            )
        case SyncCancelledError():
            return build_error_response(
                "cancelled",
                message,
                "Run todo_sync again; already synced tasks are skipped.",
            )
        case SyncAbortedError():
            return build_error_response(
                "sync_aborted",
                message,
                "Check the vault path and Graph connectivity (use ping), then retry.",
            )
        case RemoteApiError(kind=kind):
            error_type, action = _REMOTE_KIND_MESSAGES.get(
                kind, _REMOTE_KIND_MESSAGES["unknown"]
            )
            return build_error_response(error_type, message, action)
        case AuthError():
            error_type, action = _REMOTE_KIND_MESSAGES["auth"]
            return build_error_response(error_type, message, action)
        case NetworkError():
            return build_error_response(
                "network_error",
                message,
                "Check network access to graph.microsoft.com, then retry.",
            )
        case NotFoundError() | OutOfRangeError():
            return build_error_response(
                "not_found",
                message,
                "The note changed on disk. Run todo_sync again to re-read it.",
            )
        case ValidationError():
            return build_error_response(
                "validation_error",
                message,
                "Check the note layout and the configured task heading.",
            )
        case _:
            return build_error_response(
                "server_error",
                message,
                "Check the server log, then retry.",
            )
