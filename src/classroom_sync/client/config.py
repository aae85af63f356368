from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime config (classroom client).

    - Loaded from environment variables
    - Also reads `.env` if present (via pydantic-settings + python-dotenv)
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CLASSROOM_", extra="ignore")

    # Relay endpoint; rooms and concerns are appended as a query parameter.
    relay_url: str = "wss://socketsbay.com/wss/v2/1/demo/"

    # Reconnect policy applied to each session channel
    auto_reconnect: bool = True
    reconnect_interval_ms: int = 5000
    max_reconnect_attempts: int = 3

    # Transport knobs (passed to websockets.connect)
    ws_ping_interval_s: float = 20.0
    ws_ping_timeout_s: float = 20.0
    ws_max_size: int = 2**22

    # Audio capture / playback
    audio_sample_rate: int = 16000
    audio_channels: int = 1
    audio_segment_ms: int = 100
    output_volume: int = 80

    # Debugging
    debug_log_msgs: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
