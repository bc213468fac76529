"""
Default value application for configuration.

This module handles:
- Transport defaults (endpoint URL, model) with environment overrides
- Session defaults (voice, instructions) with environment overrides
"""

import os
from typing import Any, Dict


def _section(config_data: Dict[str, Any], key: str) -> Dict[str, Any]:
    block = config_data.get(key)
    if not isinstance(block, dict):
        block = {}
    config_data[key] = block
    return block


def apply_transport_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply transport defaults from environment variables.

    Environment variables:
    - REALTIME_URL: Override the WebSocket endpoint
    - REALTIME_MODEL: Override the model query parameter
    - REALTIME_DEBUG: 1/true to log every sent and received event type

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    transport_cfg = _section(config_data, 'transport')

    url = os.getenv('REALTIME_URL', '').strip()
    if url:
        transport_cfg['url'] = url
    model = os.getenv('REALTIME_MODEL', '').strip()
    if model:
        transport_cfg['model'] = model
    debug = os.getenv('REALTIME_DEBUG')
    if debug is not None:
        transport_cfg['debug'] = debug.strip().lower() in ('1', 'true', 'yes', 'on')

    try:
        transport_cfg['connect_attempts'] = max(1, int(transport_cfg.get('connect_attempts', 3)))
    except (TypeError, ValueError):
        transport_cfg['connect_attempts'] = 3


def apply_session_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply session defaults from environment variables.

    Environment variables:
    - REALTIME_VOICE: Override the output voice
    - REALTIME_INSTRUCTIONS: Instructions used when YAML leaves them empty

    A ``turn_detection: server_vad`` shorthand expands to the default VAD settings.

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    session_cfg = _section(config_data, 'session')

    voice = os.getenv('REALTIME_VOICE', '').strip()
    if voice:
        session_cfg['voice'] = voice
    if not (session_cfg.get('instructions') or '').strip():
        session_cfg['instructions'] = os.getenv('REALTIME_INSTRUCTIONS', '')

    turn_detection = session_cfg.get('turn_detection')
    if isinstance(turn_detection, str):
        session_cfg['turn_detection'] = {'type': turn_detection}
