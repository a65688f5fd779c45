"""Filesystem-backed dated notes.

``DailyNoteManager`` implements the local side of the sync: it maps dates
to note files under ``<vault>/<daily_notes_path>/``, creates notes from a
template, lists the tasks in each note's task section and performs the two
line-level mutations the engine needs (append a task, tick a task).

Every mutation re-reads the note, edits its line list and writes it back
atomically. Line numbers handed out by ``get_daily_note_tasks`` are only
valid until the next append to the same note.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path

from .errors import (
    NotFoundError,
    OutOfRangeError,
    TodoSyncError,
    ValidationError,
    with_context,
)
from .file_handler import (
    read_file_with_encoding,
    read_lines,
    resolve_in_vault,
    write_file,
    write_lines,
)
from .sync.models import LocalTask
from .sync.task_text import (
    DEFAULT_SECTION_HEADING,
    find_insert_index,
    find_new_section_index,
    format_append_line,
    parse_tasks,
    set_completion,
)
from .validators import normalize_relative_path, validate_heading

logger = logging.getLogger(__name__)

# Display format -> strftime pattern
DATE_FORMATS: dict[str, str] = {
    "YYYY-MM-DD": "%Y-%m-%d",
    "DD-MM-YYYY": "%d-%m-%Y",
    "MM-DD-YYYY": "%m-%d-%Y",
    "YYYY/MM/DD": "%Y/%m/%d",
    "DD/MM/YYYY": "%d/%m/%Y",
    "MM/DD/YYYY": "%m/%d/%Y",
    "YYYYMMDD": "%Y%m%d",
}

# Tried, in order, for note names that do not match the configured format.
_FALLBACK_FORMATS = (
    "YYYY-MM-DD",
    "DD-MM-YYYY",
    "YYYY/MM/DD",
    "DD/MM/YYYY",
    "YYYYMMDD",
)


def format_note_date(value: date, fmt: str) -> str:
    """Render *value* in one of the ``DATE_FORMATS`` display formats."""
    try:
        pattern = DATE_FORMATS[fmt]
    except KeyError:
        raise ValidationError(
            f"Unsupported date format {fmt!r}; expected one of {sorted(DATE_FORMATS)}"
        ) from None
    return value.strftime(pattern)


def parse_note_date(name: str, fmt: str) -> date | None:
    """Parse a note name (relative path without ``.md``) into a date.

    The configured format is tried first, then the common daily-note
    formats. Returns ``None`` when nothing matches.
    """
    candidates = [fmt] + [f for f in _FALLBACK_FORMATS if f != fmt]
    for candidate in candidates:
        pattern = DATE_FORMATS.get(candidate)
        if pattern is None:
            continue
        try:
            return datetime.strptime(name, pattern).date()
        except ValueError:
            continue
    return None


def default_note_content(note_date: date, heading: str) -> str:
    """Content of a new note when no template is configured."""
    long_date = (
        f"{note_date:%A}, {note_date:%B} {note_date.day}, {note_date.year}"
    )
    return (
        f"# Daily Note - {long_date}\n"
        "\n"
        f"{heading}\n"
        "\n"
        "## Notes\n"
        "\n"
        "## Reflections\n"
        "\n"
    )


def render_template(template: str, note_date: date, fmt: str, now: datetime) -> str:
    """Substitute ``{{date}}``, ``{{date:FORMAT}}``, ``{{title}}``, ``{{time}}``
    and ``{{timestamp}}`` in *template*."""
    content = template.replace("{{date}}", format_note_date(note_date, fmt))
    for name in DATE_FORMATS:
        content = content.replace(
            f"{{{{date:{name}}}}}", format_note_date(note_date, name)
        )
    content = content.replace(
        "{{title}}",
        f"Daily Note - {note_date:%B} {note_date.day}, {note_date.year}",
    )
    content = content.replace("{{time}}", now.strftime("%H:%M"))
    content = content.replace(
        "{{timestamp}}",
        f"{note_date.isoformat()} {now.strftime('%H:%M:%S')}",
    )
    return content


class DailyNoteManager:
    """Read and update dated notes in a vault folder.

    Args:
        vault_root: Root directory of the note collection.
        daily_notes_path: Folder of daily notes, relative to the vault.
        date_format: One of ``DATE_FORMATS``; names the note files.
        task_section_heading: Heading of the section holding tasks.
        template_path: Optional vault-relative template for new notes.
        log: Logger to report through; defaults to the module logger.
    """

    def __init__(
        self,
        vault_root: Path,
        daily_notes_path: str = "Daily Notes",
        date_format: str = "YYYY-MM-DD",
        task_section_heading: str = DEFAULT_SECTION_HEADING,
        template_path: str | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        ok, folder = normalize_relative_path(
            daily_notes_path, "Daily notes path"
        )
        if not ok:
            raise ValidationError(folder)
        ok, message = validate_heading(task_section_heading)
        if not ok:
            raise ValidationError(message)
        if date_format not in DATE_FORMATS:
            raise ValidationError(f"Unsupported date format {date_format!r}")

        self.vault_root = Path(vault_root)
        self.daily_notes_path = folder
        self.date_format = date_format
        self.task_section_heading = task_section_heading.strip()
        self.template_path = template_path or None
        self._log = log or logger

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def notes_dir(self) -> Path:
        return resolve_in_vault(self.vault_root, self.daily_notes_path)

    def get_note_path(self, note_date: date) -> Path:
        name = format_note_date(note_date, self.date_format)
        relative = f"{self.daily_notes_path}/{name}.md".lstrip("/")
        return resolve_in_vault(self.vault_root, relative)

    def get_today_note_path(self) -> Path:
        return self.get_note_path(date.today())

    def note_date_for(self, path: Path) -> date | None:
        """Date encoded in a note's path, relative to the notes folder."""
        try:
            relative = path.resolve().relative_to(self.notes_dir)
        except ValueError:
            return None
        if relative.suffix != ".md":
            return None
        return parse_note_date(
            relative.with_suffix("").as_posix(), self.date_format
        )

    def get_daily_note_files(self) -> list[tuple[date, Path]]:
        """All dated notes under the notes folder, sorted by date.

        Raises:
            NotFoundError: If the notes folder itself is missing.
        """
        folder = self.notes_dir
        if not folder.is_dir():
            raise NotFoundError(f"Daily notes folder not found: {folder}")
        found: list[tuple[date, Path]] = []
        for path in folder.rglob("*.md"):
            note_date = self.note_date_for(path)
            if note_date is None:
                self._log.debug("Not a dated note: %s", path)
                continue
            found.append((note_date, path))
        found.sort()
        return found

    def list_note_dates(self) -> set[date]:
        return {note_date for note_date, _ in self.get_daily_note_files()}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _load_template(self) -> str | None:
        if not self.template_path:
            return None
        try:
            path = resolve_in_vault(self.vault_root, self.template_path)
            content, _ = read_file_with_encoding(path)
            return content
        except (OSError, ValidationError) as exc:
            self._log.error(
                "Failed to load template %s, using default content: %s",
                self.template_path,
                exc,
            )
            return None

    def _note_content(self, note_date: date) -> str:
        template = self._load_template()
        if template is None:
            return default_note_content(note_date, self.task_section_heading)
        return render_template(
            template,
            note_date,
            self.date_format,
            datetime.now(),
        )

    def create_daily_note(self, note_date: date) -> Path:
        """Create the note for *note_date* unless it already exists."""
        path = self.get_note_path(note_date)
        if path.is_file():
            self._log.debug("Daily note already exists: %s", path)
            return path
        try:
            write_file(path, self._note_content(note_date))
        except OSError as exc:
            raise with_context(
                f"Failed to create daily note for {note_date}", exc
            ) from exc
        self._log.info("Created daily note %s", path)
        return path

    def ensure_today_note_exists(self) -> Path:
        return self.create_daily_note(date.today())

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_daily_note_tasks(self, path: Path) -> list[LocalTask]:
        """Tasks in the task section of one note.

        Raises:
            NotFoundError: If the note does not exist.
            ValidationError: If *path* is not a dated note.
        """
        path = Path(path)
        note_date = self.note_date_for(path)
        if note_date is None:
            raise ValidationError(f"Not a dated note: {path}")
        try:
            lines, _, _ = read_lines(path)
        except TodoSyncError as exc:
            raise with_context("Failed to read daily note tasks", exc) from exc
        return parse_tasks(
            lines, str(path), note_date, self.task_section_heading
        )

    def get_all_daily_note_tasks(self) -> list[LocalTask]:
        tasks: list[LocalTask] = []
        for _, path in self.get_daily_note_files():
            tasks.extend(self.get_daily_note_tasks(path))
        self._log.debug("Read %d tasks from daily notes", len(tasks))
        return tasks

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_task_to_todo_section(
        self, path: Path, title: str, remote_id: str | None = None
    ) -> None:
        """Append ``- [ ] <title>`` to the task section of *path*.

        The line goes after the section's last task; a missing section is
        created before the note's first second-level heading.
        """
        path = Path(path)
        try:
            lines, encoding, newline = read_lines(path)
        except TodoSyncError as exc:
            raise with_context("Failed to add task", exc) from exc

        new_line = format_append_line(title, remote_id)
        insert_at = find_insert_index(lines, self.task_section_heading)
        if insert_at is None:
            section_at = find_new_section_index(lines)
            block = [self.task_section_heading, new_line, ""]
            if section_at > 0 and lines[section_at - 1].strip():
                block.insert(0, "")
            lines[section_at:section_at] = block
        else:
            lines.insert(insert_at, new_line)

        write_lines(path, lines, encoding, newline)
        self._log.debug("Added task %r to %s", title, path)

    def update_task_completion(
        self,
        path: Path,
        line_number: int,
        completed: bool,
        completion_date: date | None = None,
    ) -> None:
        """Rewrite one checkbox line with a new completion state.

        Raises:
            NotFoundError: If the note does not exist.
            OutOfRangeError: If *line_number* is past the end of the note.
            ValidationError: If the line is not a checkbox.
        """
        path = Path(path)
        prefix = "Failed to update task completion"
        try:
            lines, encoding, newline = read_lines(path)
        except TodoSyncError as exc:
            raise with_context(prefix, exc) from exc

        if line_number < 0 or line_number >= len(lines):
            raise OutOfRangeError(
                f"{prefix}: line {line_number} is out of range for "
                f"{path} ({len(lines)} lines)"
            )
        try:
            lines[line_number] = set_completion(
                lines[line_number], completed, completion_date
            )
        except ValidationError as exc:
            raise with_context(prefix, exc) from exc

        write_lines(path, lines, encoding, newline)
        self._log.debug(
            "Set completion=%s on %s:%d", completed, path, line_number
        )
