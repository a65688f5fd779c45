"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ..bootstrap import build_reconciler, load_runtime_config
from ..core.async_utils import run_sync
from ..core.client import GraphTodoClient

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env, YAML config and env vars via ``load_runtime_config()``
    - Create GraphTodoClient and validate the token
    - Resolve the task list and build the Reconciler
    - Fail fast if Graph is unreachable or the token is rejected

    On shutdown:
    - Cancel a run still in progress and flush the identity store

    Args:
        config_overrides: Optional dict with config values from CLI
            (access_token, vault_path, list_name, state_dir)

    Yields:
        Dict with 'client' and 'reconciler' keys

    Raises:
        RuntimeError: If configuration is invalid or the Graph connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("todo-sync MCP server starting...")

    try:
        overrides = {
            k: v
            for k, v in (config_overrides or {}).items()
            if k in ("access_token", "vault_path", "list_name", "state_dir")
        }
        config, _, sources = load_runtime_config(overrides)
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Vault: %s", config.vault_path)
        _stderr_print(f"  Vault: {config.vault_path}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure TODO_ACCESS_TOKEN and TODO_VAULT_PATH are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure TODO_ACCESS_TOKEN and TODO_VAULT_PATH are set."
        ) from e

    logger.info("Validating Microsoft Graph connection...")
    _stderr_print("  Validating Microsoft Graph connection...")
    try:
        client = GraphTodoClient(config)
        user = await run_sync(client.validate_connection)
        logger.info("Connected to Microsoft Graph as %s", user)
        _stderr_print(f"  Connected to Microsoft Graph as {user}")
        reconciler = await run_sync(build_reconciler, config, client)
        _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
        _stderr_print("Server ready. Waiting for MCP client connection...")
    except Exception as e:
        logger.error("Failed to connect to Microsoft Graph: %s", e)
        _stderr_print("ERROR: Microsoft Graph connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check TODO_ACCESS_TOKEN and TODO_LIST_NAME.")
        raise RuntimeError(
            f"Microsoft Graph connection failed: {e}. Check TODO_ACCESS_TOKEN and TODO_LIST_NAME."
        ) from e

    try:
        yield {"client": client, "reconciler": reconciler}
    finally:
        reconciler.cancel()
        reconciler.identity.flush()
        logger.info("MCP server shutting down")
        _stderr_print("todo-sync MCP server shutting down.")
