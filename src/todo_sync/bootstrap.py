"""Wiring shared by the CLI and the MCP server.

``load_runtime_config`` resolves settings from every source and
``build_reconciler`` turns them into a ready ``Reconciler`` backed by the
Graph client, the vault's daily notes and the JSON identity store.
"""

import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config, to_fallbacks
from .core.client import GraphTodoClient
from .notes import DailyNoteManager
from .sync.engine import Reconciler
from .sync.identity import IdentityStore
from .sync.storage import JsonFileStore

logger = logging.getLogger(__name__)


def load_runtime_config(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig, list[str]]:
    """Load configuration with unified precedence.

    CLI overrides > env vars (.env loaded first) > YAML config > defaults.

    Args:
        overrides: CLI values keyed by ``load_config`` argument name
            (``access_token``, ``vault_path``, ``list_name``, ``state_dir``,
            ``debug``).

    Returns:
        Tuple of (validated Config, unified YAML config, list of source
        descriptions for logging).

    Raises:
        ValueError: If required settings are missing or invalid.
    """
    # .env first so ${VAR} interpolation in YAML can see its values
    load_dotenv()

    sources: list[str] = []
    yaml_fallbacks: dict[str, Any] | None = None
    unified = UnifiedConfig()
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        yaml_fallbacks = to_fallbacks(unified)
        sources.append(f"config file: {config_files[0]}")

    overrides = overrides or {}
    config = load_config(
        access_token=overrides.get("access_token"),
        vault_path=overrides.get("vault_path"),
        list_name=overrides.get("list_name"),
        state_dir=overrides.get("state_dir"),
        debug=overrides.get("debug", False),
        yaml_fallbacks=yaml_fallbacks,
    )

    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    return config, unified, sources


def resolve_state_dir(config: Config) -> Path:
    """State directory; relative paths are taken from the vault root."""
    state_dir = Path(config.state_dir).expanduser()
    if not state_dir.is_absolute():
        state_dir = Path(config.vault_path) / state_dir
    return state_dir


def build_reconciler(
    config: Config,
    client: GraphTodoClient | None = None,
    log: logging.Logger | None = None,
) -> Reconciler:
    """Assemble a ``Reconciler`` from *config*.

    Resolves (or creates) the task list by name when no list id is
    configured. This performs Graph requests.
    """
    client = client or GraphTodoClient(config)
    list_id = config.list_id or client.get_or_create_task_list(config.list_name)
    client.set_default_list_id(list_id)
    logger.info("Using task list %s", list_id)

    notes = DailyNoteManager(
        Path(config.vault_path),
        daily_notes_path=config.daily_notes_path,
        date_format=config.date_format,
        task_section_heading=config.task_section_heading,
        template_path=config.template_path,
        log=log,
    )
    state_dir = resolve_state_dir(config)
    identity = IdentityStore(JsonFileStore(state_dir), log=log)
    logger.info(
        "Loaded %d identity records from %s", len(identity), state_dir
    )

    return Reconciler(
        remote=client,
        notes=notes,
        identity=identity,
        list_id=list_id,
        max_parallel_requests=config.max_parallel_requests,
        retention_days=config.retention_days,
        clean_remote_titles=config.clean_remote_titles,
        reconcile_identities=config.reconcile_identities,
        log=log,
    )
