"""
Verifies that OAuth secrets and bearer tokens are redacted from logs.
"""

import json
import logging

import pytest
import structlog

from pbx_streamer.logging_config import (
    add_correlation_id,
    configure_logging,
    get_logger,
    get_correlation_id,
    sanitize_secrets,
    set_correlation_id,
)


class TestLogSanitization:
    """Tests for secret sanitization processor."""

    def test_redact_client_secret(self):
        event_dict = {
            'message': 'Requesting token',
            'client_secret': 'Xy7f9aQ2mB',
            'client_id': 'app-id',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert result['client_secret'] == 'Xy***REDACTED***'
        assert result['client_id'] == 'app-id'
        assert result['message'] == 'Requesting token'

    def test_redact_access_token(self):
        event_dict = {
            'message': 'Token acquired',
            'access_token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert result['access_token'] == 'ey***REDACTED***'

    def test_redact_authorization_header(self):
        """Bearer headers keep only their first two characters."""
        event_dict = {'authorization': 'Bearer abc.def.ghi'}
        result = sanitize_secrets(None, None, event_dict)

        assert result['authorization'] == 'Be***REDACTED***'

    def test_short_values_fully_redacted(self):
        result = sanitize_secrets(None, None, {'token': 'abc'})
        assert result['token'] == '***REDACTED***'

    def test_case_insensitive_and_hyphenated_keys(self):
        event_dict = {
            'Authorization': 'Bearer something',
            'CLIENT_SECRET': 'secret-value',
            'client-secret': 'secret-value',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert all('REDACTED' in v for v in result.values())

    def test_suffix_match(self):
        event_dict = {'upstream_authorization': 'Bearer xyz123', 'ws_token': 'abcdefgh'}
        result = sanitize_secrets(None, None, event_dict)

        assert 'REDACTED' in result['upstream_authorization']
        assert 'REDACTED' in result['ws_token']

    def test_nested_headers_sanitized(self):
        event_dict = {
            'message': 'Upload request',
            'headers': {
                'Authorization': 'Bearer abcdef',
                'Content-Type': 'application/octet-stream',
            },
        }
        result = sanitize_secrets(None, None, event_dict)

        assert 'REDACTED' in result['headers']['Authorization']
        assert result['headers']['Content-Type'] == 'application/octet-stream'

    def test_list_of_dicts_sanitized(self):
        event_dict = {'attempts': [{'access_token': 'abcdef123', 'status': 401}]}
        result = sanitize_secrets(None, None, event_dict)

        assert 'REDACTED' in result['attempts'][0]['access_token']
        assert result['attempts'][0]['status'] == 401

    @pytest.mark.parametrize("value", ['', None])
    def test_empty_values_preserved(self, value):
        result = sanitize_secrets(None, None, {'client_secret': value})
        assert result['client_secret'] == value

    def test_preserve_non_sensitive_data(self):
        event_dict = {
            'message': 'Participant status',
            'participant_id': '42',
            'status': 'Connected',
            'entity': '/callcontrol/111/participants/42',
            'token_url': 'https://pbx.example.com/connect/token',
        }
        result = sanitize_secrets(None, None, event_dict)

        assert result == event_dict


class TestCorrelationId:

    def test_generated_id_is_added_to_records(self):
        cid = set_correlation_id()

        assert len(cid) == 12
        assert get_correlation_id() == cid
        assert add_correlation_id(None, None, {})['correlation_id'] == cid

    def test_explicit_id_is_kept(self):
        set_correlation_id("evt-1")
        assert add_correlation_id(None, None, {'event': 'x'}) == {'event': 'x', 'correlation_id': 'evt-1'}


@pytest.fixture
def restore_logging(monkeypatch):
    for name in ("LOG_LEVEL", "LOG_FORMAT", "LOG_TO_FILE", "LOG_FILE_PATH", "LOG_SHOW_TRACEBACKS"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_file_output_is_json_and_redacted(tmp_path, restore_logging):
    path = tmp_path / "logs" / "streamer.log"
    configure_logging(log_level="INFO", log_to_file=True, log_file_path=str(path))

    get_logger("tests.file_output").info("Access token acquired", access_token="eyJhbGciOi.payload")
    get_logger("tests.file_output").debug("Filtered out at INFO")
    for handler in logging.getLogger().handlers:
        handler.flush()

    records = [json.loads(line) for line in path.read_text().splitlines()]
    record = records[-1]
    assert record["event"] == "Access token acquired"
    assert record["access_token"] == "ey***REDACTED***"
    assert record["service"] == "pbx-streamer"
    assert record["level"] == "info"
    assert all(r["event"] != "Filtered out at INFO" for r in records)
