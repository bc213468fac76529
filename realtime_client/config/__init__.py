"""
Configuration package for the realtime client.

This package contains:
- models: pydantic models for client, transport, session and logging settings
- loaders: YAML file loading and parsing
- security: API key injection
- defaults: Default value application
"""

from typing import Optional

from .defaults import apply_session_defaults, apply_transport_defaults
from .loaders import expand_env, load_yaml_with_env_expansion, resolve_config_path
from .models import (
    ClientConfig,
    InputAudioTranscriptionConfig,
    LoggingConfig,
    SessionConfig,
    TransportConfig,
    TurnDetectionConfig,
)
from .security import inject_api_key


def load_config(path: Optional[str] = None) -> ClientConfig:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Path to YAML configuration file (absolute or relative to project root);
            defaults to REALTIME_CLIENT_CONFIG or config/realtime-client.yaml

    Returns:
        Validated ClientConfig instance

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If values fail validation
    """
    path = resolve_config_path(path)
    config_data = load_yaml_with_env_expansion(path)

    inject_api_key(config_data)

    apply_transport_defaults(config_data)
    apply_session_defaults(config_data)

    return ClientConfig(**config_data)


__all__ = [
    'ClientConfig',
    'InputAudioTranscriptionConfig',
    'LoggingConfig',
    'SessionConfig',
    'TransportConfig',
    'TurnDetectionConfig',
    'load_config',
    'resolve_config_path',
    'load_yaml_with_env_expansion',
    'expand_env',
    'inject_api_key',
    'apply_transport_defaults',
    'apply_session_defaults',
]
