"""Exception hierarchy shared by the sync engine and its collaborators.

Local failures (missing note, bad line index, malformed checkbox) and
remote failures (Graph HTTP errors, transport errors, token problems) all
derive from ``TodoSyncError`` so callers at the MCP/CLI boundary can catch
one base class and translate it into a user-facing message.
"""

from __future__ import annotations

import re

_BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*")
_TOKEN_FIELD_PATTERN = re.compile(
    r"(access_token|refresh_token)([\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+"
)


class TodoSyncError(Exception):
    """Base class for all todo-sync errors."""


class NotFoundError(TodoSyncError):
    """A note file or task line does not exist."""


class OutOfRangeError(TodoSyncError):
    """A line index is at or beyond the end of a note."""


class ValidationError(TodoSyncError):
    """Malformed input: not a checkbox line, bad heading, bad path."""


class RemoteApiError(TodoSyncError):
    """The task service answered with an error status.

    Attributes:
        kind: One of ``auth``, ``rate_limit``, ``server``, ``not_found``,
            ``unknown``.
        status: HTTP status code, when one was received.
    """

    def __init__(
        self, message: str, kind: str = "unknown", status: int | None = None
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


class NetworkError(TodoSyncError):
    """The task service could not be reached at all."""


class AuthError(TodoSyncError):
    """No usable access token could be obtained."""


class SyncAbortedError(TodoSyncError):
    """A snapshot of either store could not be taken; nothing was synced."""


class SyncInProgressError(TodoSyncError):
    """Another full sync is already running on the same identity store."""


class SyncCancelledError(TodoSyncError):
    """The run was cancelled between two per-task operations."""


def classify_status(status: int) -> str:
    """Map an HTTP status code onto a ``RemoteApiError.kind``."""
    match status:
        case 401 | 403:
            return "auth"
        case 404:
            return "not_found"
        case 429:
            return "rate_limit"
        case s if 500 <= s < 600:
            return "server"
        case _:
            return "unknown"


def mask_secrets(text: str) -> str:
    """Replace bearer tokens and token fields in *text* with a mask."""
    text = _BEARER_PATTERN.sub("Bearer [MASKED]", text)
    return _TOKEN_FIELD_PATTERN.sub(r"\1\2[MASKED]", text)


def with_context(prefix: str, exc: Exception) -> TodoSyncError:
    """Return *exc* re-created with an operation prefix on its message.

    The exception class is preserved for ``TodoSyncError`` subclasses so
    callers can still branch on ``NotFoundError`` and friends. Anything
    else becomes a plain ``TodoSyncError``.

    Example::

        except NotFoundError as exc:
            raise with_context("Failed to update task completion", exc) from exc
    """
    message = f"{prefix}: {exc}"
    if isinstance(exc, RemoteApiError):
        return RemoteApiError(message, kind=exc.kind, status=exc.status)
    if isinstance(exc, TodoSyncError):
        return type(exc)(message)
    return TodoSyncError(message)
