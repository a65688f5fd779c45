"""Line-level task grammar for dated notes.

A task line looks like::

    <indent>- [ ] <text>
    <indent>- [x] <text> [completion:: 2024-01-15]

Free text may carry annotations in any order: a completion date, a due
date, hashtags, ``[[wiki links]]``, ``**bold**``/``*italic*`` emphasis and
an internal tracking tag (``[todo:: <id>]`` or ``[todo-id:: <id>]``).

Two titles are derived from the text:

* the *display* title (``extract_title``) drops dates, tags, links and
  emphasis but keeps the tracking tag, which is opaque to the remote side;
* the *normalized* title (``normalize_title``) additionally drops the
  tracking tag and is the only key ever stored in the identity mapping.

Section scoping follows Markdown heading levels: a section runs from its
heading line to the next heading of the same or a shallower level.
"""

from __future__ import annotations

import logging
import re
from datetime import date

from ..errors import ValidationError
from .models import LocalTask

logger = logging.getLogger(__name__)

DEFAULT_SECTION_HEADING = "## ToDo"

_CHECKBOX_RE = re.compile(r"^(\s*)-\s*\[([ xX])\]\s*(.*)$")
_HEADING_RE = re.compile(r"^(#+)\s")

_DATE = r"(\d{4}-\d{2}-\d{2})"
_COMPLETION_RE = re.compile(r"\[completion::\s*" + _DATE + r"\s*\]")
_COMPLETION_EMOJI_RE = re.compile("✅\\s*" + _DATE)
_DUE_RE = re.compile(r"\bdue:\s*" + _DATE)
_DUE_EMOJI_RE = re.compile("\U0001f4c5\\s*" + _DATE)
_TRACKING_TAG_RE = re.compile(r"\[todo(?:-id)?::[^\]]*\]")
_HASHTAG_RE = re.compile(r"(^|\s)#\w+")
_WIKI_LINK_RE = re.compile(r"\[\[[^\]]*\]\]")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_WHITESPACE_RE = re.compile(r"\s+")


# ------------------------------------------------------------------
# Annotation helpers
# ------------------------------------------------------------------


def _to_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        logger.debug("Ignoring invalid annotation date %r", value)
        return None


def _find_date(text: str, *patterns: re.Pattern) -> date | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return _to_date(match.group(1))
    return None


def _strip_italic(text: str) -> str:
    """Remove single-asterisk emphasis markers.

    Scans runs of ``*`` explicitly: only runs of exactly one character
    count as italic delimiters, and they are removed in pairs. Longer runs
    and a trailing unpaired ``*`` are left as they are.
    """
    singles: list[int] = []
    i = 0
    while i < len(text):
        if text[i] != "*":
            i += 1
            continue
        run_start = i
        while i < len(text) and text[i] == "*":
            i += 1
        if i - run_start == 1:
            singles.append(run_start)

    drop: set[int] = set()
    for opening, closing in zip(singles[0::2], singles[1::2]):
        # "**" split by nothing is not emphasis
        if closing - opening > 1:
            drop.update((opening, closing))
    return "".join(ch for idx, ch in enumerate(text) if idx not in drop)


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def has_tracking_tag(title: str) -> bool:
    return _TRACKING_TAG_RE.search(title) is not None


def strip_tracking_tag(title: str) -> str:
    """Remove every internal tracking tag and collapse whitespace."""
    return _collapse(_TRACKING_TAG_RE.sub("", title))


def extract_title(text: str) -> str:
    """Return the display title of a task's free text.

    Removal order: completion annotation, due annotation, hashtags, wiki
    links, bold, then italic. The tracking tag is kept.
    """
    title = _COMPLETION_RE.sub("", text)
    title = _COMPLETION_EMOJI_RE.sub("", title)
    title = _DUE_RE.sub("", title)
    title = _DUE_EMOJI_RE.sub("", title)
    title = _HASHTAG_RE.sub(r"\1", title)
    title = _WIKI_LINK_RE.sub("", title)
    title = _BOLD_RE.sub(r"\1", title)
    title = _strip_italic(title)
    return _collapse(title)


def normalize_title(title: str) -> str:
    """Return the identity key for *title*.

    Accepts either raw line text or an already extracted display title;
    both reduce to the same key. Case is preserved.
    """
    return strip_tracking_tag(extract_title(title))


def comparison_key(title: str) -> str:
    """Case-insensitive form of ``normalize_title`` used for title matching."""
    return normalize_title(title).casefold()


# ------------------------------------------------------------------
# Line parsing / formatting
# ------------------------------------------------------------------


def is_checkbox_line(line: str) -> bool:
    return _CHECKBOX_RE.match(line) is not None


def parse_line(
    line: str,
    line_number: int,
    file_path: str,
    note_date: date,
) -> LocalTask | None:
    """Parse one line into a ``LocalTask``.

    Returns ``None`` for lines that are not checkboxes and for checkboxes
    whose title is empty once annotations are stripped.
    """
    match = _CHECKBOX_RE.match(line)
    if not match:
        return None
    indent, mark, text = match.groups()

    title = extract_title(text)
    if not strip_tracking_tag(title):
        logger.debug(
            "Skipping empty task at %s:%d", file_path, line_number
        )
        return None

    return LocalTask(
        note_date=note_date,
        title=title,
        completed=mark.lower() == "x",
        completion_date=_find_date(
            text, _COMPLETION_RE, _COMPLETION_EMOJI_RE
        ),
        due_date=_find_date(text, _DUE_RE, _DUE_EMOJI_RE),
        file_path=file_path,
        line_number=line_number,
        indent=indent,
    )


def format_line(task: LocalTask) -> str:
    """Render *task* as a checkbox line.

    A completion annotation is only written for a completed task that has
    a completion date.
    """
    marker = "- [x] " if task.completed else "- [ ] "
    line = f"{task.indent}{marker}{task.title}"
    if task.completed and task.completion_date is not None:
        line += f" [completion:: {task.completion_date.isoformat()}]"
    return line


def format_append_line(title: str, remote_id: str | None = None) -> str:
    """Line appended to a note for a newly created task."""
    line = f"- [ ] {title}"
    if remote_id:
        line += f" [todo-id:: {remote_id}]"
    return line


def set_completion(
    line: str, completed: bool, completion_date: date | None = None
) -> str:
    """Rewrite a checkbox line with a new completion state.

    Any existing completion annotation is replaced. Other annotations,
    the indent, and the rest of the text are preserved.

    Raises:
        ValidationError: If *line* is not a checkbox line.
    """
    match = _CHECKBOX_RE.match(line)
    if not match:
        raise ValidationError(f"Not a task line: {line!r}")
    indent, _mark, text = match.groups()

    text = _COMPLETION_RE.sub("", text)
    text = _COMPLETION_EMOJI_RE.sub("", text)
    text = _collapse(text)

    marker = "- [x] " if completed else "- [ ] "
    new_line = f"{indent}{marker}{text}"
    if completed and completion_date is not None:
        new_line += f" [completion:: {completion_date.isoformat()}]"
    return new_line


# ------------------------------------------------------------------
# Section scoping
# ------------------------------------------------------------------


def heading_level(line: str) -> int:
    """Number of leading ``#`` characters; 0 for non-heading lines."""
    match = _HEADING_RE.match(line)
    if not match:
        return 0
    return len(match.group(1))


def find_section_bounds(
    lines: list[str], heading: str
) -> tuple[int, int] | None:
    """Locate the section introduced by *heading*.

    Returns:
        ``(start, end)`` where ``start`` is the heading line index and
        ``end`` is the index of the next heading at the same or a
        shallower level (or ``len(lines)``). ``None`` when the heading is
        absent.
    """
    target = heading.strip()
    level = len(target) - len(target.lstrip("#"))
    if level == 0:
        raise ValidationError(f"Not a Markdown heading: {heading!r}")

    start = next(
        (i for i, line in enumerate(lines) if line.strip() == target),
        None,
    )
    if start is None:
        return None

    for i in range(start + 1, len(lines)):
        found = heading_level(lines[i].strip())
        if found and found <= level:
            return start, i
    return start, len(lines)


def parse_tasks(
    lines: list[str],
    file_path: str,
    note_date: date,
    heading: str | None = None,
) -> list[LocalTask]:
    """Parse every task in *lines*, optionally scoped to one section.

    With a *heading*, only lines strictly inside that section are parsed
    and a missing heading yields an empty list.
    """
    if heading is None:
        start, end = -1, len(lines)
    else:
        bounds = find_section_bounds(lines, heading)
        if bounds is None:
            logger.debug("Heading %r not found in %s", heading, file_path)
            return []
        start, end = bounds

    tasks: list[LocalTask] = []
    for index in range(start + 1, end):
        task = parse_line(lines[index], index, file_path, note_date)
        if task is not None:
            tasks.append(task)
    return tasks


def find_insert_index(lines: list[str], heading: str) -> int | None:
    """Index at which a new task line goes inside *heading*'s section.

    The line is placed right after the last task line of the section, or
    directly under the heading when the section has no tasks yet.
    ``None`` when the heading is absent.
    """
    bounds = find_section_bounds(lines, heading)
    if bounds is None:
        return None
    start, end = bounds
    insert_at = start + 1
    for index in range(start + 1, end):
        if is_checkbox_line(lines[index]):
            insert_at = index + 1
    return insert_at


def find_new_section_index(lines: list[str]) -> int:
    """Where to create a missing task section.

    Before the first ``## `` heading, skipping a leading ``# `` title.
    Without any second-level heading, after the first blank line that
    follows the title, else at the end of the note.
    """
    for index, line in enumerate(lines):
        if line.strip().startswith("## "):
            return index
    for index in range(1, len(lines)):
        if not lines[index].strip():
            return index + 1
    return len(lines)
