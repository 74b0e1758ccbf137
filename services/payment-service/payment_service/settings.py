from __future__ import annotations

from typing import Optional

from pydantic import AnyUrl, Field
from pydantic_settings import SettingsConfigDict

from food_common.settings import ServiceSettings


class Settings(ServiceSettings):
    model_config = SettingsConfigDict(env_prefix="PAYMENT_", env_file=".env", extra="ignore")

    SERVICE_NAME: str = "payment"
    PORT: int = 8003
    MONGO_DB: str = "payment_service"

    # Collections
    COL_PAYMENTS: str = "payments"

    # Gateway: simulated unless a URL is configured
    GATEWAY_URL: Optional[AnyUrl] = Field(default=None)
    GATEWAY_CHARGE_PATH: str = "/charges"
    GATEWAY_TIMEOUT_SECONDS: float = 5.0
    MAX_AMOUNT: float = 10_000.0

    @property
    def gateway_charge_url(self) -> Optional[str]:
        if self.GATEWAY_URL is None:
            return None
        return f"{str(self.GATEWAY_URL).rstrip('/')}{self.GATEWAY_CHARGE_PATH}"


settings = Settings()
