from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierConfig(BaseModel):
    """Tier definition as supplied through configuration."""

    name: str
    threshold: int = Field(..., ge=0)
    multiplier: Decimal = Field(..., gt=0)
    benefits: list[str] = Field(default_factory=list)


DEFAULT_TIERS: list[TierConfig] = [
    TierConfig(name="bronze", threshold=0, multiplier=Decimal("1.0"), benefits=["Standard support"]),
    TierConfig(
        name="silver",
        threshold=5_000,
        multiplier=Decimal("1.25"),
        benefits=["Priority support", "25% bonus points", "Exclusive offers"],
    ),
    TierConfig(
        name="gold",
        threshold=20_000,
        multiplier=Decimal("1.5"),
        benefits=["VIP support", "50% bonus points", "Early access", "Birthday gift"],
    ),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"
    database_echo: bool = False
    tracing_enabled: bool = True

    # Internal API security
    admin_api_key: str = ""

    # Tier table, sorted by threshold at load time
    loyalty_tiers: list[TierConfig] = Field(default_factory=lambda: list(DEFAULT_TIERS))

    # Earning
    loyalty_base_earn_rate: Decimal = Decimal("1")

    # Redemption
    loyalty_redemption_increment: int = 100
    loyalty_increment_value: Decimal = Decimal("1.00")
    loyalty_voucher_validity_days: int = 90
    loyalty_voucher_code_prefix: str = "LP"

    # Bonuses
    loyalty_birthday_bonus_points: int = 100

    # Redemption catalog
    loyalty_catalog_amounts: list[int] = Field(default_factory=lambda: [100, 500, 1000, 2000, 5000])
    loyalty_catalog_min_spend: dict[int, Decimal] = Field(
        default_factory=lambda: {2000: Decimal("50"), 5000: Decimal("100")}
    )

    @field_validator("loyalty_tiers")
    @classmethod
    def _sort_tiers(cls, value: list[TierConfig]) -> list[TierConfig]:
        if not value:
            raise ValueError("At least one loyalty tier must be configured")
        return sorted(value, key=lambda tier: tier.threshold)

    @field_validator("loyalty_redemption_increment", "loyalty_voucher_validity_days")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("loyalty_catalog_amounts")
    @classmethod
    def _sort_catalog(cls, value: list[int]) -> list[int]:
        return sorted({int(item) for item in value if int(item) > 0})


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
