"""
Tests for async_utils module.

Covers run_sync.
"""

import threading

import pytest

from todo_sync.core.async_utils import run_sync


async def test_run_sync_runs_in_worker_thread():
    main_thread = threading.get_ident()
    worker = await run_sync(threading.get_ident)
    assert worker != main_thread


async def test_run_sync_passes_args_and_kwargs():
    def _join(a, b, *, sep):
        return f"{a}{sep}{b}"

    assert await run_sync(_join, "x", "y", sep="-") == "x-y"


async def test_run_sync_propagates_exceptions():
    def _fail():
        raise RuntimeError("graph down")

    with pytest.raises(RuntimeError, match="graph down"):
        await run_sync(_fail)
