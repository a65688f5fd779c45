"""Unified configuration schema for todo_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the Graph connection, the note vault, sync behaviour and
logging. Includes an adapter that flattens it into the runtime ``Config``
dataclass.

Usage:
    from todo_sync.config_schema import build_config, to_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_config(unified, cli_overrides={"vault_path": "~/Notes"})
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .config import GRAPH_BASE_URL, Config
from .notes import DATE_FORMATS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GraphConfig(BaseModel):
    """Microsoft Graph connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    access_token: str | None = Field(
        default=None, description="Graph access token (Tasks.ReadWrite)"
    )
    list_name: str = Field(
        default="Obsidian Tasks",
        description="Display name of the task list to sync with",
    )
    list_id: str | None = Field(
        default=None,
        description="Task list id; skips the lookup by name when set",
    )
    base_url: str = Field(
        default=GRAPH_BASE_URL, description="Graph API base URL"
    )
    connect_timeout: float = Field(default=10, gt=0)
    read_timeout: float = Field(default=60, gt=0)

    model_config = {"frozen": True}


class NotesConfig(BaseModel):
    """Where the dated notes live and how they are laid out."""

    vault_path: str | None = Field(
        default=None, description="Root directory of the note vault"
    )
    daily_notes_path: str = Field(
        default="Daily Notes",
        description="Folder of daily notes, relative to the vault",
    )
    date_format: str = Field(
        default="YYYY-MM-DD", description="Date format of note file names"
    )
    task_section_heading: str = Field(
        default="## ToDo", description="Heading of the task section"
    )
    template_path: str | None = Field(
        default=None,
        description="Template for new notes, relative to the vault",
    )

    model_config = {"frozen": True}

    @field_validator("date_format")
    @classmethod
    def _known_date_format(cls, value: str) -> str:
        if value not in DATE_FORMATS:
            raise ValueError(
                f"date_format must be one of {sorted(DATE_FORMATS)}"
            )
        return value


class SyncConfig(BaseModel):
    """Sync engine behaviour."""

    state_dir: str = Field(
        default=".todo_sync",
        description="Directory for the identity mapping",
    )
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent Graph requests per phase (1-32)",
    )
    retention_days: int = Field(
        default=90,
        ge=0,
        description="Prune identity records older than this; 0 disables",
    )
    interval_minutes: int = Field(
        default=15, ge=1, description="Interval for `todo-sync watch`"
    )
    clean_remote_titles: bool = Field(
        default=False,
        description="Strip tracking tags from remote task titles",
    )
    reconcile_identities: bool = Field(
        default=False,
        description="Drop records for deleted notes and follow single renames",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    graph: GraphConfig = Field(default_factory=GraphConfig)
    notes: NotesConfig = Field(default_factory=NotesConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten a ``UnifiedConfig`` into ``Config`` field names.

    Only values that are set (not ``None``) are included, so the result can
    be handed to ``load_config(yaml_fallbacks=...)``.
    """
    graph = unified.graph
    flat: dict[str, Any] = {
        "access_token": graph.access_token,
        "list_name": graph.list_name,
        "list_id": graph.list_id,
        "graph_base_url": graph.base_url,
        "timeout": (graph.connect_timeout, graph.read_timeout),
        "vault_path": unified.notes.vault_path,
        "daily_notes_path": unified.notes.daily_notes_path,
        "date_format": unified.notes.date_format,
        "task_section_heading": unified.notes.task_section_heading,
        "template_path": unified.notes.template_path,
        "state_dir": unified.sync.state_dir,
        "max_parallel_requests": unified.sync.max_parallel_requests,
        "retention_days": unified.sync.retention_days,
        "interval_minutes": unified.sync.interval_minutes,
        "clean_remote_titles": unified.sync.clean_remote_titles,
        "reconcile_identities": unified.sync.reconcile_identities,
    }
    return {k: v for k, v in flat.items() if v is not None}


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass, applying
    CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value > built-in default

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict of CLI argument values keyed by
            ``Config`` field name.

    Returns:
        ``Config`` instance (NOT validated -- caller should run
        ``validate_config()`` separately if needed).
    """
    values = to_fallbacks(unified)
    values.update(
        {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    )
    return Config(**values)
