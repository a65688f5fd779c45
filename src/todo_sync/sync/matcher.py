"""Fallback identity resolution by exact normalized title.

Used only for local tasks that have no identity record yet. Candidates are
restricted to the same date window as the local task: a remote task is
only considered when it is still open and belongs on the note the local
task lives in. Matching is one-shot per pass: once a remote task is paired
it is no longer a candidate, so two local tasks can never claim the same
remote task. Remote tasks that are already bound in the identity store are
never candidates either.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date

from ..errors import ValidationError
from .identity import IdentityStore
from .models import LocalTask, RemoteTask, TaskMatch
from .task_text import comparison_key

logger = logging.getLogger(__name__)

EXACT_MATCH_CONFIDENCE = 1.0


class DuplicateMatcher:
    """Pair unmapped local tasks with unclaimed remote tasks.

    Args:
        identity: Identity store used to exclude already-bound remote ids.
        remote_tasks: Candidate remote tasks for this pass. Completed tasks
            and tasks without any date are dropped up front.
        normalize: Title key function; defaults to the case-insensitive
            normalized title.
    """

    def __init__(
        self,
        identity: IdentityStore,
        remote_tasks: Iterable[RemoteTask],
        normalize: Callable[[str], str] = comparison_key,
    ) -> None:
        self._identity = identity
        self._normalize = normalize
        self._candidates: list[tuple[RemoteTask, date]] = []
        for remote in remote_tasks:
            if remote.is_completed:
                continue
            try:
                self._candidates.append((remote, remote.target_date))
            except ValidationError:
                continue
        self._claimed: set[str] = set()

    def match(self, task: LocalTask) -> TaskMatch | None:
        """Return the first unclaimed open remote task for the same date and title.

        The returned remote task is claimed for the rest of the pass.
        """
        key = self._normalize(task.title)
        if not key:
            return None
        for remote, target in self._candidates:
            if target != task.note_date or remote.id in self._claimed:
                continue
            if self._identity.lookup_by_remote_id(remote.id) is not None:
                continue
            if self._normalize(remote.title) == key:
                self._claimed.add(remote.id)
                logger.debug(
                    "Matched local %r (%s) to remote %s",
                    task.title,
                    task.note_date,
                    remote.id,
                )
                return TaskMatch(
                    local=task,
                    remote=remote,
                    confidence=EXACT_MATCH_CONFIDENCE,
                )
        return None
