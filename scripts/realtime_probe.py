"""
Probe for validating a realtime session end to end with RealtimeClient.

Usage:
    OPENAI_API_KEY=sk-... python scripts/realtime_probe.py [config.yaml]

The script:
  * loads config/realtime-client.yaml (or the given file) and connects
  * waits for session.created
  * streams a synthetic 440 Hz sine wave (roughly 1.2 s) in 20 ms chunks
  * commits and requests a response (manual turn detection)
  * saves the assistant audio to probe_output.raw and prints its transcript

Convert the output to WAV with:
    sox -t raw -b 16 -e signed-integer -r 24000 -c 1 probe_output.raw probe_output.wav
"""

import asyncio
import math
import pathlib
import sys
from array import array
from typing import Iterator

import structlog

from realtime_client import RealtimeClient, load_config
from realtime_client.logging_config import configure_from_config
from realtime_client.utils.audio import DEFAULT_SAMPLE_RATE, float_to_16bit_pcm, samples_to_bytes

FRAME_MS = 20
OUTPUT_FILE = pathlib.Path("probe_output.raw")

logger = structlog.get_logger("realtime_probe")


def generate_tone(duration_sec: float = 1.2, freq_hz: float = 440.0, amplitude: float = 0.4) -> array:
    """Generate a PCM16 sine wave at the protocol sample rate."""
    total_samples = int(duration_sec * DEFAULT_SAMPLE_RATE)
    return float_to_16bit_pcm(
        amplitude * math.sin(2 * math.pi * freq_hz * (n / DEFAULT_SAMPLE_RATE))
        for n in range(total_samples)
    )


def iter_frames(samples: array) -> Iterator[array]:
    frame_size = DEFAULT_SAMPLE_RATE * FRAME_MS // 1000
    for offset in range(0, len(samples), frame_size):
        yield samples[offset : offset + frame_size]


async def main(config_path=None) -> None:
    config = load_config(config_path)
    configure_from_config(config.logging)
    if not config.api_key:
        print("OPENAI_API_KEY env var is required", file=sys.stderr)
        sys.exit(1)

    client = RealtimeClient(config)
    client.on("realtime.error", lambda event: logger.error("Server error", error=event.get("error")))
    client.update_session(turn_detection=None, instructions="Please greet the caller clearly.")

    await client.connect()
    try:
        await asyncio.wait_for(client.wait_for_session_created(), timeout=10)
        logger.info("Session ready")

        for frame in iter_frames(generate_tone()):
            client.append_input_audio(frame)
        client.create_response()
        logger.info("Sent tone and requested response")

        while True:
            item = await client.wait_for_next_completed_item(timeout=30)
            if item.is_assistant_message:
                break

        OUTPUT_FILE.write_bytes(samples_to_bytes(item.formatted.audio))
        logger.info(
            "Probe finished",
            transcript=item.formatted.transcript,
            samples=len(item.formatted.audio),
            output=str(OUTPUT_FILE.resolve()),
        )
    finally:
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
