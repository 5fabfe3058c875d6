"""
MODULE OVERVIEW:
Application-wide configuration for the chat sync engine, using Pydantic Settings.

WHAT IS HAPPENING HERE:
All transport timings (heartbeat, backoff, connect timeout) and REST endpoints are
declared in one place. Values can be overridden with `CHAT_SYNC_*` environment
variables or a `.env` file. Components take an explicit `Settings` so tests can
shrink the delays without touching the environment.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAT_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        # Tolerate unrelated env vars so the CLI runs out of the box
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"

    API_BASE_URL: str = "http://127.0.0.1:3000"
    WS_URL: str = "ws://127.0.0.1:3001/ws-api"
    HTTP_TIMEOUT_S: float = 10.0

    # WebSocket link
    WS_HEARTBEAT_INTERVAL_S: float = 25.0
    WS_CONNECT_TIMEOUT_S: float = 10.0
    WS_RECONNECT_BASE_DELAY_S: float = 1.0
    WS_RECONNECT_MIN_DELAY_S: float = 2.0
    WS_RECONNECT_MAX_DELAY_S: float = 30.0
    WS_MAX_RECONNECT_ATTEMPTS: int = 5

    # Stores
    SEARCH_DEBOUNCE_S: float = 0.3
    IMAGE_MAX_BYTES: int = 5 * 1024 * 1024
    AVATAR_FALLBACK_URL: str = (
        "https://api.dicebear.com/7.x/initials/svg?seed={username}"
        "&backgroundColor=3B82F6,8B5CF6,EC4899,10B981,F59E0B&textColor=ffffff"
    )


settings = Settings()
