"""Application configuration management using Pydantic Settings."""

from typing import List
from decimal import Decimal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./vehiclemarket.db"

    # API
    API_V1_PREFIX: str = "/api"

    # CORS
    CORS_ORIGINS: List[str] = ['http://localhost:3000']

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Negotiation Settings
    NEGOTIATION_POLL_INTERVAL_SECONDS: float = 5.0  # Both parties poll the proposal store at this cadence
    MIN_DISCOUNT_PERCENT: Decimal = Decimal("0")
    MAX_DISCOUNT_PERCENT: Decimal = Decimal("30")
    MIN_DOWNPAYMENT_PERCENT: Decimal = Decimal("10")
    MAX_DOWNPAYMENT_PERCENT: Decimal = Decimal("100")
    DEFAULT_DOWNPAYMENT_PERCENT: Decimal = Decimal("10")

    # Shipping & Logistics
    LOADING_PORTS: List[str] = ["Dubai", "Abu Dhabi", "Sharjah", "Other"]
    DESTINATION_PORTS: List[str] = ["Jabel Ali", "Khalifa Port"]
    LOGISTICS_PARTNERS: List[str] = ["UGR", "None"]

    # Local quote-builder cache (client side)
    SELECTION_CACHE_PATH: str = ".quote_builder.json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("CORS_ORIGINS", "LOADING_PORTS", "DESTINATION_PORTS", "LOGISTICS_PARTNERS", mode="before")
    @classmethod
    def parse_json_list(cls, v) -> List[str]:
        """Parse list settings from a JSON string."""
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator(
        "MIN_DISCOUNT_PERCENT",
        "MAX_DISCOUNT_PERCENT",
        "MIN_DOWNPAYMENT_PERCENT",
        "MAX_DOWNPAYMENT_PERCENT",
        "DEFAULT_DOWNPAYMENT_PERCENT",
        mode="before"
    )
    @classmethod
    def parse_decimal(cls, v) -> Decimal:
        """Parse string to Decimal for precise arithmetic."""
        if isinstance(v, str):
            return Decimal(v)
        return v


# Global settings instance
settings = Settings()
