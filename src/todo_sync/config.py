"""Runtime configuration for the note/task sync.

Reads settings from CLI args, environment variables, .env files, and YAML
config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TODO_ACCESS_TOKEN: Graph access token with Tasks.ReadWrite (required)
    TODO_VAULT_PATH: Root directory of the note vault (required)
    TODO_LIST_NAME: Task list display name (optional, default: Obsidian Tasks)
    TODO_LIST_ID: Task list id; skips the lookup by name (optional)
    TODO_DAILY_NOTES_PATH: Daily notes folder inside the vault (optional)
    TODO_DATE_FORMAT: Note file name date format (optional, default: YYYY-MM-DD)
    TODO_TASK_HEADING: Heading of the task section (optional, default: ## ToDo)
    TODO_STATE_DIR: Directory for the identity mapping (optional)
    TODO_MAX_PARALLEL_REQUESTS: Max concurrent Graph requests (optional, default: 4)
    TODO_RETENTION_DAYS: Identity retention in days, 0 disables (optional, default: 90)
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


@dataclass
class Config:
    access_token: str = ""
    list_name: str = "Obsidian Tasks"
    list_id: str | None = None
    graph_base_url: str = GRAPH_BASE_URL
    timeout: tuple[float, float] = (10, 60)
    vault_path: str = ""
    daily_notes_path: str = "Daily Notes"
    date_format: str = "YYYY-MM-DD"
    task_section_heading: str = "## ToDo"
    template_path: str | None = None
    state_dir: str = ".todo_sync"
    max_parallel_requests: int = 4
    retention_days: int = 90
    interval_minutes: int = 15
    clean_remote_titles: bool = False
    reconcile_identities: bool = False
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the token or vault path is empty, the vault does not
            exist, or a numeric setting is out of range.
    """
    config.access_token = config.access_token.strip()
    if not config.access_token:
        raise ValueError(
            "Access token cannot be empty. Set TODO_ACCESS_TOKEN environment variable."
        )

    config.vault_path = os.path.expanduser(config.vault_path.strip())
    if not config.vault_path:
        raise ValueError(
            "Vault path cannot be empty. Set TODO_VAULT_PATH environment variable."
        )
    if not os.path.isdir(config.vault_path):
        raise ValueError(
            f"Vault path '{config.vault_path}' does not exist or is not a directory"
        )

    if not config.graph_base_url.startswith("https://"):
        raise ValueError(
            f"Invalid Graph URL '{config.graph_base_url}': must start with https://"
        )
    config.graph_base_url = config.graph_base_url.removesuffix("/")

    if not (1 <= config.max_parallel_requests <= 32):
        raise ValueError(
            f"Invalid max_parallel_requests {config.max_parallel_requests}: "
            "must be a number between 1 and 32"
        )
    if config.retention_days < 0:
        raise ValueError(
            f"Invalid retention_days {config.retention_days}: must be 0 or more"
        )

    if not config.list_id and not config.list_name.strip():
        raise ValueError("Either a task list id or a task list name is required")


def _int_env(key: str, low: int, high: int | None) -> int | None:
    """Parse an integer env var, or return None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    bound = f"between {low} and {high}" if high is not None else f"{low} or more"
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number {bound}"
        ) from None
    if value < low or (high is not None and value > high):
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bound}")
    return value


def load_config(
    access_token: str | None = None,
    vault_path: str | None = None,
    list_name: str | None = None,
    state_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        access_token: Override Graph access token.
        vault_path: Override vault root directory.
        list_name: Override task list display name.
        state_dir: Override state directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict keyed by ``Config`` field names, as
            produced by ``config_schema.to_fallbacks()``.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config (token, vault) is missing after
            checking all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default/error ---

    final_token = (
        access_token or os.getenv("TODO_ACCESS_TOKEN") or fb.get("access_token")
    )
    if not final_token:
        raise ValueError(
            "Access token not found. Set TODO_ACCESS_TOKEN environment variable, "
            "pass --token CLI argument, or add 'access_token' to config.yml."
        )

    final_vault = vault_path or os.getenv("TODO_VAULT_PATH") or fb.get("vault_path")
    if not final_vault:
        raise ValueError(
            "Vault path not found. Set TODO_VAULT_PATH environment variable, "
            "pass --vault CLI argument, or add 'vault_path' to config.yml."
        )

    def pick(cli_value: str | None, env_key: str, field: str) -> str:
        value = cli_value or os.getenv(env_key) or fb.get(field)
        if value is None:
            return getattr(Config, field)
        return value

    final_list_name = pick(list_name, "TODO_LIST_NAME", "list_name")
    final_state_dir = pick(state_dir, "TODO_STATE_DIR", "state_dir")
    final_list_id = os.getenv("TODO_LIST_ID") or fb.get("list_id")
    final_notes_path = pick(None, "TODO_DAILY_NOTES_PATH", "daily_notes_path")
    final_date_format = pick(None, "TODO_DATE_FORMAT", "date_format")
    final_heading = pick(None, "TODO_TASK_HEADING", "task_section_heading")

    # --- Boolean fields: CLI > env > YAML > default ---

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("TODO_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    final_max_parallel = _int_env("TODO_MAX_PARALLEL_REQUESTS", 1, 32)
    if final_max_parallel is None:
        final_max_parallel = int(
            fb.get("max_parallel_requests", Config.max_parallel_requests)
        )

    final_retention = _int_env("TODO_RETENTION_DAYS", 0, None)
    if final_retention is None:
        final_retention = int(fb.get("retention_days", Config.retention_days))

    config = Config(
        access_token=final_token,
        list_name=final_list_name,
        list_id=final_list_id,
        graph_base_url=fb.get("graph_base_url", GRAPH_BASE_URL),
        timeout=tuple(fb.get("timeout", Config.timeout)),
        vault_path=final_vault,
        daily_notes_path=final_notes_path,
        date_format=final_date_format,
        task_section_heading=final_heading,
        template_path=fb.get("template_path"),
        state_dir=final_state_dir,
        max_parallel_requests=final_max_parallel,
        retention_days=final_retention,
        interval_minutes=int(fb.get("interval_minutes", Config.interval_minutes)),
        clean_remote_titles=bool(fb.get("clean_remote_titles", False)),
        reconcile_identities=bool(fb.get("reconcile_identities", False)),
        debug=final_debug,
    )

    validate_config(config)

    return config
