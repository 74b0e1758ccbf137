from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from food_common.settings import ServiceSettings


class Settings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="DELIVERY_", env_file=".env", extra="ignore")

    SERVICE_NAME: str = "delivery"
    PORT: int = 8004
    MONGO_DB: str = "delivery_service"

    # Collections
    COL_DELIVERIES: str = "deliveries"

    # JSON list in env, e.g. DELIVERY_DRIVER_POOL='["driver-1","driver-2"]'
    DRIVER_POOL: List[str] = Field(
        default_factory=lambda: ["driver-1", "driver-2", "driver-3", "driver-4", "driver-5"]
    )


settings = Settings()
