"""
Configuration models for the realtime client.

Pydantic v2 models validate the YAML configuration and the live session
configuration that is sent to the server in ``session.update``.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TurnDetectionConfig(BaseModel):
    """Server-side voice activity detection settings."""
    type: str = Field(default="server_vad")
    threshold: float = Field(default=0.5)  # 0.0 to 1.0
    prefix_padding_ms: int = Field(default=300)  # audio kept before detected speech
    silence_duration_ms: int = Field(default=200)  # silence that ends a turn


class InputAudioTranscriptionConfig(BaseModel):
    model: str = Field(default="whisper-1")


class SessionConfig(BaseModel):
    """
    Session resource as accepted by ``session.update``.

    ``turn_detection=None`` means the client commits audio itself before
    requesting a response.
    """
    model_config = ConfigDict(extra="forbid")

    modalities: List[str] = Field(default_factory=lambda: ["text", "audio"])
    instructions: str = Field(default="")
    voice: str = Field(default="alloy")
    input_audio_format: Literal["pcm16", "g711_ulaw", "g711_alaw"] = Field(default="pcm16")
    output_audio_format: Literal["pcm16", "g711_ulaw", "g711_alaw"] = Field(default="pcm16")
    input_audio_transcription: Optional[InputAudioTranscriptionConfig] = None
    turn_detection: Optional[TurnDetectionConfig] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    tool_choice: Union[str, Dict[str, Any]] = Field(default="auto")
    temperature: float = Field(default=0.8)
    max_response_output_tokens: Union[int, Literal["inf"]] = Field(default=4096)


class TransportConfig(BaseModel):
    url: str = Field(default="wss://api.openai.com/v1/realtime")
    model: str = Field(default="gpt-4o-realtime-preview-2024-10-01")
    connect_timeout_sec: float = Field(default=10.0)
    connect_attempts: int = Field(default=3)
    debug: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: Literal["json", "console"] = Field(default="json")
    to_file: bool = Field(default=False)
    file_path: str = Field(default="logs/")


class ClientConfig(BaseModel):
    """Top-level configuration loaded from ``config/realtime-client.yaml``."""
    api_key: Optional[str] = None
    transport: TransportConfig = Field(default_factory=TransportConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
