import functools
from decimal import Decimal
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_title: str = "Meraki Marketplace API"
    api_version: str = "0.1.0"
    api_debug: bool = False
    api_docs_url: Optional[str] = "/docs"

    redis_url: str = Field(..., alias="REDIS_URL")
    database_url: str = Field(..., alias="DATABASE_URL")

    notification_namespace: str = Field(default="meraki", alias="NOTIFICATION_NAMESPACE")
    notification_backlog: int = Field(default=100, ge=1, alias="NOTIFICATION_BACKLOG")

    # Fee rates are fractions of the settled amount, applied in whole currency units.
    trade_fee_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1, alias="TRADE_FEE_RATE")
    purchase_fee_rate: Decimal = Field(default=Decimal("0.15"), ge=0, le=1, alias="PURCHASE_FEE_RATE")
    trade_offer_ttl_hours: int = Field(default=72, ge=1, alias="TRADE_OFFER_TTL_HOURS")
    currency: str = "VND"

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
