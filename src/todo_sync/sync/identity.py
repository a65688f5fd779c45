"""Persistent identity mapping between local task keys and remote task ids.

Records are keyed by ``(note date, normalized title)`` and persisted through
a ``KeyValueStore`` as a nested mapping::

    {
      "2024-01-15": {
        "Buy milk": {"remoteId": "AAMk...", "lastSynced": "2024-01-15T08:00:00+00:00"}
      }
    }

A reverse index (remote id -> key) is rebuilt in memory at load time and
never persisted. Titles must be normalized by the caller; the store does no
stripping of its own.

Key design choices:

* **One-to-one** -- binding a remote id that is already bound elsewhere
  moves it; a remote id never appears under two keys.
* **Write-through by default** -- every mutation is saved immediately.
  With ``autosave=False`` writes are buffered until ``flush()``.
* **Thread safe** -- an ``RLock`` guards all state; ``key_lock()`` hands out
  a per-key mutex so callers can serialise lookup-create-upsert sequences
  for one key while other keys proceed in parallel.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone

from .models import IdentityRecord
from .ports import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "task_identity"

_Key = tuple[date, str]


class IdentityStore:
    """Bidirectional ``(date, normalized title) <-> remote id`` mapping.

    Args:
        backend: Persistence collaborator.
        storage_key: Key under which the mapping is saved.
        autosave: Save after every mutation (``True``) or only on
            ``flush()``.
        log: Logger to report through; defaults to the module logger.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        storage_key: str = STORAGE_KEY,
        autosave: bool = True,
        log: logging.Logger | None = None,
    ) -> None:
        self._backend = backend
        self._storage_key = storage_key
        self._autosave = autosave
        self._log = log or logger

        self._lock = threading.RLock()
        self._key_locks: dict[_Key, threading.Lock] = {}
        self._records: dict[_Key, IdentityRecord] = {}
        self._by_remote: dict[str, _Key] = {}
        self._dirty = False

        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        payload = self._backend.load(self._storage_key)
        if not payload:
            return
        if not isinstance(payload, dict):
            self._log.warning(
                "Identity payload is %s, expected a mapping; starting empty",
                type(payload).__name__,
            )
            return

        for date_str, titles in payload.items():
            try:
                note_date = date.fromisoformat(date_str)
            except (TypeError, ValueError):
                self._log.warning("Skipping identity date %r", date_str)
                continue
            if not isinstance(titles, dict):
                continue
            for title, entry in titles.items():
                record = self._record_from_entry(note_date, title, entry)
                if record is None:
                    continue
                self._bind(record)

        self._log.debug("Loaded %d identity records", len(self._records))

    def _record_from_entry(
        self, note_date: date, title: str, entry: object
    ) -> IdentityRecord | None:
        if not isinstance(entry, dict) or not entry.get("remoteId"):
            self._log.warning(
                "Skipping malformed identity record %s/%r", note_date, title
            )
            return None
        last_synced = entry.get("lastSynced")
        try:
            synced_at = datetime.fromisoformat(last_synced)
        except (TypeError, ValueError):
            synced_at = datetime.now(timezone.utc)
        if synced_at.tzinfo is None:
            synced_at = synced_at.replace(tzinfo=timezone.utc)
        return IdentityRecord(
            note_date=note_date,
            normalized_title=title,
            remote_id=str(entry["remoteId"]),
            last_synced=synced_at,
        )

    def _to_payload(self) -> dict[str, dict[str, dict[str, str]]]:
        payload: dict[str, dict[str, dict[str, str]]] = {}
        for (note_date, title), record in sorted(self._records.items()):
            payload.setdefault(note_date.isoformat(), {})[title] = {
                "remoteId": record.remote_id,
                "lastSynced": record.last_synced.isoformat(),
            }
        return payload

    def _changed(self) -> None:
        self._dirty = True
        if self._autosave:
            self.flush()

    def flush(self) -> None:
        """Write pending changes to the backend. No-op when clean."""
        with self._lock:
            if not self._dirty:
                return
            self._backend.save(self._storage_key, self._to_payload())
            self._dirty = False

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    def _bind(self, record: IdentityRecord) -> None:
        key = (record.note_date, record.normalized_title)
        previous_key = self._by_remote.get(record.remote_id)
        if previous_key is not None and previous_key != key:
            self._log.debug(
                "Remote id %s moves from %s to %s",
                record.remote_id,
                previous_key,
                key,
            )
            self._records.pop(previous_key, None)
        old = self._records.get(key)
        if old is not None and old.remote_id != record.remote_id:
            self._by_remote.pop(old.remote_id, None)
        self._records[key] = record
        self._by_remote[record.remote_id] = key

    def _unbind(self, key: _Key) -> IdentityRecord | None:
        record = self._records.pop(key, None)
        if record is not None:
            self._by_remote.pop(record.remote_id, None)
        return record

    @contextmanager
    def key_lock(self, note_date: date, title: str) -> Iterator[None]:
        """Hold the mutex for one ``(date, title)`` key."""
        with self._lock:
            lock = self._key_locks.setdefault(
                (note_date, title), threading.Lock()
            )
        with lock:
            yield

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def upsert(
        self,
        note_date: date,
        title: str,
        remote_id: str,
        synced_at: datetime | None = None,
    ) -> IdentityRecord:
        """Bind ``(note_date, title)`` to *remote_id*, refreshing ``last_synced``."""
        if not title:
            raise ValueError("Identity title cannot be empty")
        if not remote_id:
            raise ValueError("Remote id cannot be empty")
        record = IdentityRecord(
            note_date=note_date,
            normalized_title=title,
            remote_id=remote_id,
            last_synced=synced_at or datetime.now(timezone.utc),
        )
        with self._lock:
            self._bind(record)
            self._changed()
        return record

    def lookup_remote_id(self, note_date: date, title: str) -> str | None:
        with self._lock:
            record = self._records.get((note_date, title))
            return record.remote_id if record else None

    def lookup_by_remote_id(self, remote_id: str) -> IdentityRecord | None:
        with self._lock:
            key = self._by_remote.get(remote_id)
            return self._records.get(key) if key else None

    def rename_title(
        self, note_date: date, old_title: str, new_title: str
    ) -> bool:
        """Move a record to a new title on the same date.

        Returns:
            ``True`` if a record was renamed, ``False`` if *old_title* had
            no record.
        """
        with self._lock:
            record = self._unbind((note_date, old_title))
            if record is None:
                return False
            self._bind(
                record.model_copy(
                    update={
                        "normalized_title": new_title,
                        "last_synced": datetime.now(timezone.utc),
                    }
                )
            )
            self._changed()
            return True

    def remove(self, note_date: date, title: str) -> bool:
        with self._lock:
            if self._unbind((note_date, title)) is None:
                return False
            self._changed()
            return True

    def prune(self, older_than: date) -> int:
        """Drop records last synced before *older_than*.

        Returns:
            Number of records removed.
        """
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if record.last_synced.date() < older_than
            ]
            for key in stale:
                self._unbind(key)
            if stale:
                self._log.info(
                    "Pruned %d identity records older than %s",
                    len(stale),
                    older_than,
                )
                self._changed()
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._by_remote.clear()
            self._changed()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def records(self) -> list[IdentityRecord]:
        with self._lock:
            return [self._records[key] for key in sorted(self._records)]

    def records_for_date(self, note_date: date) -> list[IdentityRecord]:
        with self._lock:
            return [
                record
                for (record_date, _), record in sorted(self._records.items())
                if record_date == note_date
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records
