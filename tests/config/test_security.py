"""
Unit tests for config.security module.

Tests cover:
- OAuth client credential injection (environment variables only)
- PBX base URL and extension overrides
- String token expansion
"""

import pytest

from pbx_streamer.config.security import (
    _is_nonempty_string,
    expand_string_tokens,
    inject_pbx_credentials,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PBX_CLIENT_ID", "PBX_CLIENT_SECRET", "PBX_BASE_URL", "PBX_EXTENSION", "PBX_DIAL_DESTINATION"):
        monkeypatch.delenv(name, raising=False)


class TestIsNonemptyString:

    def test_valid_string_returns_true(self):
        assert _is_nonempty_string("hello") is True

    def test_blank_strings_return_false(self):
        assert _is_nonempty_string("") is False
        assert _is_nonempty_string("   ") is False

    def test_non_string_returns_false(self):
        assert _is_nonempty_string(None) is False
        assert _is_nonempty_string(42) is False


class TestExpandStringTokens:

    def test_expand_dollar_brace(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "test_value")
        assert expand_string_tokens("prefix_${TEST_VAR}_suffix") == "prefix_test_value_suffix"

    def test_none_becomes_empty_string(self):
        assert expand_string_tokens(None) == ""


class TestInjectPbxCredentials:

    def test_credentials_come_from_env(self, monkeypatch):
        monkeypatch.setenv("PBX_CLIENT_ID", "app-id")
        monkeypatch.setenv("PBX_CLIENT_SECRET", "app-secret")
        config_data = {'pbx': {'base_url': 'https://pbx.example.com', 'extension': '111'}}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['client_id'] == 'app-id'
        assert config_data['pbx']['client_secret'] == 'app-secret'

    def test_yaml_credentials_are_ignored(self):
        """Secrets written into YAML must never be used."""
        config_data = {'pbx': {
            'base_url': 'https://pbx.example.com',
            'extension': '111',
            'client_id': 'yaml-id',
            'client_secret': 'yaml-secret',
        }}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['client_id'] is None
        assert config_data['pbx']['client_secret'] is None

    def test_env_overrides_base_url_and_strips_trailing_slash(self, monkeypatch):
        monkeypatch.setenv("PBX_BASE_URL", "https://other.example.com/")
        config_data = {'pbx': {'base_url': 'https://pbx.example.com', 'extension': '111'}}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['base_url'] == 'https://other.example.com'

    def test_numeric_extension_becomes_string(self):
        config_data = {'pbx': {'base_url': 'https://pbx.example.com', 'extension': 111}}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['extension'] == '111'

    def test_env_extension_and_dial_destination(self, monkeypatch):
        monkeypatch.setenv("PBX_EXTENSION", "222")
        monkeypatch.setenv("PBX_DIAL_DESTINATION", "1000")
        config_data = {'pbx': {'base_url': 'https://pbx.example.com', 'extension': '111'}}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['extension'] == '222'
        assert config_data['pbx']['dial_destination'] == '1000'

    def test_missing_pbx_block(self):
        config_data = {}

        inject_pbx_credentials(config_data)

        assert config_data['pbx']['base_url'] is None
        assert config_data['pbx']['extension'] is None
