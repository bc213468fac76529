"""
Credential injection.

SECURITY POLICY:
- The API key MUST NEVER be in YAML files
- It comes from the OPENAI_API_KEY environment variable only
"""

import os
from typing import Any, Dict


def _is_nonempty_string(val: Any) -> bool:
    """True if val is a string with non-whitespace content."""
    return isinstance(val, str) and val.strip() != ""


def inject_api_key(config_data: Dict[str, Any]) -> None:
    """
    Inject the API key from the environment, discarding any YAML value.

    Environment variables:
    - OPENAI_API_KEY: realtime API key

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    api_key = os.getenv("OPENAI_API_KEY")
    config_data['api_key'] = api_key if _is_nonempty_string(api_key) else None
