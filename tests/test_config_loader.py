"""Tests for todo_sync.config_loader -- hierarchical config loading."""

import textwrap

import pytest
import yaml

from todo_sync.config_loader import (
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    resolve_config_path,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty CWD and HOME with no config env var."""
    monkeypatch.delenv("TODO_SYNC_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("MY_TOKEN", "abc")
        assert interpolate_env_vars("${MY_TOKEN}") == "abc"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR_XYZ", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-~/Notes}") == "~/Notes"
        assert interpolate_env_vars("${EMPTY_VAR_XYZ:-x}") == "x"

    def test_literal_dollar_brace_no_closing(self):
        assert interpolate_env_vars("cost ${5") == "cost ${5"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("VAULT", "/notes")
        data = {"notes": {"vault_path": "${VAULT}", "n": 5}, "l": ["${VAULT}"]}
        assert _interpolate_recursive(data) == {
            "notes": {"vault_path": "/notes", "n": 5},
            "l": ["/notes"],
        }


# -------------------------------------------------------------------------
# !include directive
# -------------------------------------------------------------------------


class TestIncludeDirective:
    """Tests for !include YAML loading via ConfigLoader subclass."""

    def test_include_relative_file(self, tmp_path):
        (tmp_path / "secrets.yml").write_text("access_token: secret123\n")
        main = tmp_path / "config.yml"
        main.write_text("graph: !include secrets.yml\n")

        assert _load_yaml_with_includes(main) == {
            "graph": {"access_token": "secret123"}
        }

    def test_include_nonexistent_raises(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("data: !include missing.yml\n")

        with pytest.raises(FileNotFoundError, match="missing.yml"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")

        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Discovery and bootstrapping
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    def test_env_var_takes_highest_precedence(self, isolated, monkeypatch):
        custom = isolated / "custom.yml"
        custom.write_text("graph: {}\n")
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("notes: {}\n")
        monkeypatch.setenv("TODO_SYNC_CONFIG", str(custom))

        result = discover_config_files()
        assert result[0] == custom.resolve()
        assert project in result

    def test_project_before_global(self, isolated):
        project = isolated / ".todo_sync" / "config.yaml"
        project.parent.mkdir()
        project.write_text("x: 1\n")
        global_cfg = isolated / "home" / ".config" / "todo_sync" / "config.yml"
        global_cfg.parent.mkdir(parents=True)
        global_cfg.write_text("y: 2\n")

        assert discover_config_files() == [project, global_cfg]

    def test_nothing_found(self, isolated):
        assert discover_config_files() == []


class TestEnsureConfig:
    def test_creates_starter_file(self, isolated):
        path = ensure_config()
        assert path == isolated / ".todo_sync" / "config.yml"
        text = path.read_text(encoding="utf-8")
        assert "TODO_ACCESS_TOKEN" in text
        # Every setting is commented out, so the file loads as empty
        assert yaml.safe_load(text) is None

    def test_existing_file_untouched(self, isolated):
        existing = isolated / ".todo_sync" / "config.yml"
        existing.parent.mkdir()
        existing.write_text("notes:\n  vault_path: /v\n")

        assert ensure_config() == existing
        assert existing.read_text() == "notes:\n  vault_path: /v\n"

    def test_explicit_target(self, isolated):
        target = isolated / "elsewhere" / "todo.yml"
        assert ensure_config(target) == target
        assert target.exists()

    def test_resolve_config_path_default(self, isolated):
        assert resolve_config_path() == isolated / ".todo_sync" / "config.yml"


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    def test_project_overrides_global_at_section_level(self, isolated):
        global_cfg = isolated / "home" / ".config" / "todo_sync" / "config.yml"
        global_cfg.parent.mkdir(parents=True)
        global_cfg.write_text(
            textwrap.dedent("""\
            graph:
              list_name: Global List
            notes:
              vault_path: /global
              daily_notes_path: Journal
            """)
        )
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("notes:\n  vault_path: /project\n")

        result = load_hierarchical_config()

        assert result["graph"] == {"list_name": "Global List"}
        # Sections are replaced wholesale, not deep-merged
        assert result["notes"] == {"vault_path": "/project"}

    def test_env_interpolation_after_merge(self, isolated, monkeypatch):
        monkeypatch.setenv("MY_VAULT", "/from/env")
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("notes:\n  vault_path: ${MY_VAULT}\n")

        assert load_hierarchical_config() == {"notes": {"vault_path": "/from/env"}}

    def test_zero_config(self, isolated):
        assert load_hierarchical_config() == {}

    def test_non_dict_root_skipped(self, isolated):
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("- a\n- b\n")

        assert load_hierarchical_config() == {}

    def test_broken_yaml_raises(self, isolated):
        project = isolated / ".todo_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("notes: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()
