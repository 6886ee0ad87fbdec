"""
Security-critical configuration injection.

SECURITY POLICY:
- The OAuth client id and secret MUST NEVER be in YAML files
- They come from environment variables only; YAML values are discarded
"""

import os
from typing import Any, Dict


def _is_nonempty_string(val: Any) -> bool:
    return isinstance(val, str) and val.strip() != ""


def expand_string_tokens(value: str) -> str:
    """
    Expand environment variable tokens in a string.

    Supports ${VAR} and $VAR syntax. Undefined variables are left unchanged.
    """
    return os.path.expandvars(value or "")


def inject_pbx_credentials(config_data: Dict[str, Any]) -> None:
    """
    Inject PBX connection settings and OAuth client credentials.

    Environment variables:
    - PBX_CLIENT_ID / PBX_CLIENT_SECRET (required, env only)
    - PBX_BASE_URL (overrides pbx.base_url)
    - PBX_EXTENSION (overrides pbx.extension)

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    pbx_yaml = config_data.get('pbx') if isinstance(config_data.get('pbx'), dict) else {}

    base_url = os.getenv("PBX_BASE_URL") or pbx_yaml.get("base_url")
    if _is_nonempty_string(base_url):
        base_url = expand_string_tokens(base_url).rstrip("/")

    extension = os.getenv("PBX_EXTENSION") or pbx_yaml.get("extension")
    if extension is not None:
        extension = str(extension)

    config_data['pbx'] = {
        "base_url": base_url,
        "client_id": os.getenv("PBX_CLIENT_ID"),
        "client_secret": os.getenv("PBX_CLIENT_SECRET"),
        "extension": extension,
        "dial_destination": os.getenv("PBX_DIAL_DESTINATION") or pbx_yaml.get("dial_destination"),
    }
