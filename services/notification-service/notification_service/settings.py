from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from food_common.settings import ServiceSettings


class Settings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="NOTIFICATION_", env_file=".env", extra="ignore")

    SERVICE_NAME: str = "notification"
    PORT: int = 8005
    MONGO_DB: str = "notification_service"

    # Collections
    COL_NOTIFICATIONS: str = "notifications"

    # WebSocket
    WS_PATH: str = "/ws"                                             # e.g., ws://host:port/ws
    WS_ALLOW_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])  # tighten in prod if needed


settings = Settings()
