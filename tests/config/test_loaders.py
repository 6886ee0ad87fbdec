"""
Unit tests for config.loaders module.

Tests cover:
- Path resolution (relative vs absolute)
- YAML loading with environment variable expansion
- Error handling (missing files, invalid YAML)
"""

import os
import pytest
import yaml

from pbx_streamer.config.loaders import resolve_config_path, load_yaml_with_env_expansion


class TestResolveConfigPath:
    """Tests for resolve_config_path function."""

    def test_absolute_path_unchanged(self):
        abs_path = "/etc/pbx/streamer.yaml"
        assert resolve_config_path(abs_path) == abs_path

    def test_relative_path_resolved_against_project_root(self):
        rel_path = "config/pbx-streamer.yaml"
        result = resolve_config_path(rel_path)

        assert os.path.isabs(result)
        assert result.endswith(rel_path)
        # The sample config ships with the project
        assert os.path.isfile(result)


class TestLoadYamlWithEnvExpansion:
    """Tests for load_yaml_with_env_expansion function."""

    def test_load_simple_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("pbx:\n  extension: '111'\nmedia:\n  chunk_size: 4096\n")

        result = load_yaml_with_env_expansion(str(path))

        assert result == {'pbx': {'extension': '111'}, 'media': {'chunk_size': 4096}}

    def test_env_vars_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_PBX_HOST", "pbx.example.com")
        path = tmp_path / "config.yaml"
        path.write_text("pbx:\n  base_url: https://${TEST_PBX_HOST}\n")

        result = load_yaml_with_env_expansion(str(path))

        assert result['pbx']['base_url'] == "https://pbx.example.com"

    def test_undefined_env_vars_left_in_place(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_UNDEFINED_VAR", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("value: ${TEST_UNDEFINED_VAR}\n")

        assert load_yaml_with_env_expansion(str(path)) == {'value': '${TEST_UNDEFINED_VAR}'}

    def test_empty_file_returns_empty_dict(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_yaml_with_env_expansion(str(path)) == {}

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError) as exc_info:
            load_yaml_with_env_expansion(str(tmp_path / "missing.yaml"))
        assert "Configuration file not found" in str(exc_info.value)

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text("pbx:\n  base_url: [unclosed\n")

        with pytest.raises(yaml.YAMLError) as exc_info:
            load_yaml_with_env_expansion(str(path))
        assert "Error parsing YAML" in str(exc_info.value)
