"""Tests for todo_sync.bootstrap -- shared CLI/MCP wiring."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from todo_sync.bootstrap import build_reconciler, load_runtime_config, resolve_state_dir
from todo_sync.config import Config
from todo_sync.config_schema import UnifiedConfig
from todo_sync.sync.engine import Reconciler


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No config files, no .env and a clean TODO_* environment."""
    for key in ("TODO_SYNC_CONFIG", "TODO_ACCESS_TOKEN", "TODO_VAULT_PATH", "TODO_LIST_NAME",
                "TODO_LIST_ID", "TODO_STATE_DIR", "TODO_RETENTION_DAYS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    with patch("todo_sync.bootstrap.load_dotenv"):
        yield tmp_path


# -------------------------------------------------------------------------
# load_runtime_config()
# -------------------------------------------------------------------------


class TestLoadRuntimeConfig:
    def test_env_only(self, isolated, monkeypatch, vault):
        monkeypatch.setenv("TODO_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("TODO_VAULT_PATH", str(vault))

        config, unified, sources = load_runtime_config()

        assert config.access_token == "env-token"
        assert unified == UnifiedConfig()
        assert sources == ["environment variables"]

    def test_yaml_file_used_as_fallback(self, isolated, monkeypatch, vault):
        monkeypatch.setenv("TODO_ACCESS_TOKEN", "env-token")
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text(
            f"notes:\n  vault_path: {vault}\nsync:\n  retention_days: 14\n"
        )

        config, unified, sources = load_runtime_config()

        assert config.vault_path == str(vault)
        assert config.retention_days == 14
        assert unified.sync.retention_days == 14
        assert sources == [f"config file: {project}", "environment variables"]

    def test_overrides_win(self, isolated, monkeypatch, vault):
        monkeypatch.setenv("TODO_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("TODO_VAULT_PATH", "/does/not/exist")

        config, _, sources = load_runtime_config(
            {"vault_path": str(vault), "list_name": "Work", "debug": True}
        )

        assert config.vault_path == str(vault)
        assert config.list_name == "Work"
        assert config.debug is True
        assert sources == ["CLI arguments", "environment variables"]

    def test_missing_token_raises(self, isolated, vault):
        with pytest.raises(ValueError, match="Access token not found"):
            load_runtime_config({"vault_path": str(vault)})


# -------------------------------------------------------------------------
# resolve_state_dir() / build_reconciler()
# -------------------------------------------------------------------------


class TestResolveStateDir:
    def test_relative_to_vault(self, tmp_path):
        config = Config(vault_path=str(tmp_path), state_dir=".todo_sync")
        assert resolve_state_dir(config) == tmp_path / ".todo_sync"

    def test_absolute_kept(self, tmp_path):
        config = Config(vault_path="/vault", state_dir=str(tmp_path / "state"))
        assert resolve_state_dir(config) == tmp_path / "state"


class TestBuildReconciler:
    def test_resolves_list_by_name(self, mock_config):
        client = MagicMock()
        client.get_or_create_task_list.return_value = "L1"

        reconciler = build_reconciler(mock_config, client)

        assert isinstance(reconciler, Reconciler)
        client.get_or_create_task_list.assert_called_once_with("Obsidian Tasks")
        client.set_default_list_id.assert_called_once_with("L1")
        assert reconciler.list_id == "L1"
        assert reconciler.remote is client

    def test_configured_list_id_skips_lookup(self, mock_config):
        mock_config.list_id = "L9"
        client = MagicMock()

        reconciler = build_reconciler(mock_config, client)

        client.get_or_create_task_list.assert_not_called()
        assert reconciler.list_id == "L9"

    def test_settings_flow_through(self, mock_config, vault):
        mock_config.list_id = "L1"
        mock_config.daily_notes_path = "Journal"
        mock_config.retention_days = 7
        mock_config.max_parallel_requests = 2
        mock_config.clean_remote_titles = True

        reconciler = build_reconciler(mock_config, MagicMock())

        assert reconciler.notes.vault_root == Path(vault)
        assert reconciler.notes.daily_notes_path == "Journal"
        assert reconciler.retention_days == 7
        assert reconciler.max_parallel_requests == 2
        assert reconciler.clean_remote_titles is True
        assert len(reconciler.identity) == 0

    def test_existing_identity_state_loaded(self, mock_config, vault):
        mock_config.list_id = "L1"
        state = vault / ".todo_sync"
        state.mkdir()
        (state / "task_identity.json").write_text(
            '{"2024-01-15": {"Buy milk": {"remoteId": "r1", '
            '"lastSynced": "2024-01-15T08:00:00+00:00"}}}',
            encoding="utf-8",
        )

        reconciler = build_reconciler(mock_config, MagicMock())

        assert len(reconciler.identity) == 1
