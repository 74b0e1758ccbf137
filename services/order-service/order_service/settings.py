from __future__ import annotations

from pydantic_settings import SettingsConfigDict

from food_common.settings import ServiceSettings


class Settings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="ORDER_", env_file=".env", extra="ignore")

    SERVICE_NAME: str = "order"
    PORT: int = 8001
    MONGO_DB: str = "order_service"

    # Collections
    COL_ORDERS: str = "orders"

    # HTTP idempotency-key replay window
    IDEMPOTENCY_TTL_SECONDS: int = 24 * 3600


settings = Settings()
