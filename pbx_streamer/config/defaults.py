"""
Default value application for configuration.

Each helper fills one block of the config dict in-place, letting
environment variables override values from YAML.
"""

import os
from typing import Any, Dict


def _block(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = config_data.get(name)
    return block if isinstance(block, dict) else {}


def apply_media_defaults(config_data: Dict[str, Any]) -> None:
    """
    Media asset settings.

    Environment variables:
    - PBX_AUDIO_FILE: path of the WAV file to stream
    - PBX_AUDIO_CHUNK_SIZE: bytes read per chunk (default: 8192)
    """
    media = _block(config_data, 'media')

    audio_file = os.getenv('PBX_AUDIO_FILE', '').strip()
    if audio_file:
        media['audio_path'] = audio_file

    try:
        media['chunk_size'] = int(os.getenv('PBX_AUDIO_CHUNK_SIZE', str(media.get('chunk_size', 8192))))
    except ValueError:
        media['chunk_size'] = 8192

    config_data['media'] = media


def apply_event_feed_defaults(config_data: Dict[str, Any]) -> None:
    """
    Event feed reconnect policy.

    Environment variables:
    - PBX_RECONNECT_DELAY_SEC: fixed delay between reconnects (default: 5)
    - PBX_MAX_RECONNECT_FAILURES: stop after N consecutive failures (default: unbounded)
    """
    feed = _block(config_data, 'event_feed')

    try:
        feed['reconnect_delay_sec'] = float(os.getenv('PBX_RECONNECT_DELAY_SEC', str(feed.get('reconnect_delay_sec', 5.0))))
    except ValueError:
        feed['reconnect_delay_sec'] = 5.0

    max_failures = os.getenv('PBX_MAX_RECONNECT_FAILURES', '').strip()
    if max_failures:
        try:
            feed['max_consecutive_failures'] = int(max_failures)
        except ValueError:
            feed['max_consecutive_failures'] = None

    feed.setdefault('subscribe_path', '/callcontrol')
    config_data['event_feed'] = feed


def apply_http_defaults(config_data: Dict[str, Any]) -> None:
    """
    Timeout for token and participant requests.

    Environment variables:
    - PBX_REQUEST_TIMEOUT_SEC (default: 10)
    """
    http = _block(config_data, 'http')
    try:
        http['request_timeout_sec'] = float(os.getenv('PBX_REQUEST_TIMEOUT_SEC', str(http.get('request_timeout_sec', 10.0))))
    except ValueError:
        http['request_timeout_sec'] = 10.0
    config_data['http'] = http


def apply_logging_defaults(config_data: Dict[str, Any]) -> None:
    logging_cfg = _block(config_data, 'logging')
    env_level = os.getenv('LOG_LEVEL', '').strip()
    if env_level:
        logging_cfg['level'] = env_level.lower()
    logging_cfg.setdefault('level', 'info')
    config_data['logging'] = logging_cfg
