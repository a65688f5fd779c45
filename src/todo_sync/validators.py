"""
Input validation functions for todo-sync.

Provides validation for vault-relative paths, section headings, task
titles and list names so bad configuration is rejected before any note is
touched or any Graph request is made.
"""

import re

_FORBIDDEN_PATH_CHARS = re.compile(r'[<>:"|?*]')
_HEADING_RE = re.compile(r"^#{1,6} \S")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Daily notes path")
        reason: Description of validation failure (e.g., "cannot contain '..'")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def normalize_relative_path(
    path: str, field_name: str = "Path"
) -> tuple[bool, str]:
    """
    Validate and normalize a vault-relative folder or file path.

    Args:
        path: The path as configured by the user.
        field_name: Field name used in the error message.

    Returns:
        Tuple of (is_valid, value). On success value is the normalized
        path (surrounding slashes and whitespace stripped, possibly empty
        for the vault root); on failure it is the error message.

    Validation rules:
        - Cannot contain '..' or backslashes (path traversal protection)
        - Cannot contain any of < > : " | ? *
    """
    normalized = (path or "").strip().strip("/")
    if not normalized:
        return (True, "")

    if ".." in normalized or "\\" in normalized:
        return (
            False,
            format_validation_error(
                field_name, "cannot contain '..' or backslashes"
            ),
        )

    if _FORBIDDEN_PATH_CHARS.search(normalized):
        return (
            False,
            format_validation_error(
                field_name, 'cannot contain any of < > : " | ? *'
            ),
        )

    return (True, normalized)


def validate_heading(heading: str) -> tuple[bool, str]:
    """
    Validate a Markdown section heading such as ``## ToDo``.

    Args:
        heading: The heading line to validate

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not heading or not heading.strip():
        return (
            False,
            format_validation_error("Task section heading", "cannot be empty"),
        )
    if not _HEADING_RE.match(heading.strip()):
        return (
            False,
            format_validation_error(
                "Task section heading",
                "must start with 1-6 '#' characters followed by a space and text",
            ),
        )
    return (True, "")


def validate_task_title(title: str, max_length: int = 255) -> tuple[bool, str]:
    """
    Validate a task title before sending it to Microsoft To Do.

    Args:
        title: The task title
        max_length: Maximum length accepted by the service (default: 255)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not title or not title.strip():
        return (False, format_validation_error("Task title", "cannot be empty"))

    if len(title) > max_length:
        return (
            False,
            format_validation_error(
                "Task title", f"exceeds maximum length of {max_length} characters"
            ),
        )

    return (True, "")


def validate_list_name(name: str) -> tuple[bool, str]:
    """
    Validate a Microsoft To Do list display name.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not name or not name.strip():
        return (False, format_validation_error("List name", "cannot be empty"))
    if len(name) > 255:
        return (
            False,
            format_validation_error(
                "List name", "exceeds maximum length of 255 characters"
            ),
        )
    return (True, "")
