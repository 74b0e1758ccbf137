from __future__ import annotations

from pydantic_settings import SettingsConfigDict

from food_common.settings import ServiceSettings


class Settings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="KITCHEN_", env_file=".env", extra="ignore")

    SERVICE_NAME: str = "kitchen"
    PORT: int = 8002
    MONGO_DB: str = "kitchen_service"

    # Collections
    COL_KITCHEN_ORDERS: str = "kitchenOrders"


settings = Settings()
