"""Configuration settings for the farm ledger."""

from datetime import datetime
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings for simple environment variable configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: str = Field(default="data", validation_alias="FARM_DATA_DIR")
    ledger_history_cap: int = Field(
        default=10000, ge=1, validation_alias="FARM_LEDGER_HISTORY_CAP"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )

    # Plantation prices (per plant)
    main_crop_price: float = Field(default=0.15, validation_alias="FARM_MAIN_CROP_PRICE")
    specialty_crop_price: float = Field(
        default=0.20, validation_alias="FARM_SPECIALTY_CROP_PRICE"
    )

    # Animal delivery
    animal_delivery_value: float = Field(
        default=160.0, validation_alias="FARM_ANIMAL_DELIVERY_VALUE"
    )
    animal_delivery_payment: float = Field(
        default=60.0, validation_alias="FARM_ANIMAL_DELIVERY_PAYMENT"
    )
    animals_per_delivery: int = Field(default=4, validation_alias="FARM_ANIMALS_PER_DELIVERY")
    feed_per_delivery: int = Field(default=8, validation_alias="FARM_FEED_PER_DELIVERY")
    delivery_lookback_minutes: int = Field(
        default=120, validation_alias="FARM_DELIVERY_LOOKBACK_MINUTES"
    )
    delivery_lookahead_minutes: int = Field(
        default=10, validation_alias="FARM_DELIVERY_LOOKAHEAD_MINUTES"
    )

    # Abuse charges
    suspicious_item_charge: float = Field(
        default=1.0, validation_alias="FARM_SUSPICIOUS_ITEM_CHARGE"
    )
    default_tool_cost: float = Field(default=5.0, validation_alias="FARM_DEFAULT_TOOL_COST")
    excess_feed_charge: float = Field(default=0.5, validation_alias="FARM_EXCESS_FEED_CHARGE")
    stolen_animal_charge: float = Field(
        default=40.0, validation_alias="FARM_STOLEN_ANIMAL_CHARGE"
    )
    stolen_feed_charge: float = Field(default=1.0, validation_alias="FARM_STOLEN_FEED_CHARGE")
    feed_reasonable_cap: int = Field(default=100, validation_alias="FARM_FEED_REASONABLE_CAP")
    abuse_ignore_before: datetime | None = Field(
        default=None, validation_alias="FARM_ABUSE_IGNORE_BEFORE"
    )

    # Manager accountability
    plants_per_seed: int = Field(default=10, validation_alias="FARM_PLANTS_PER_SEED")
    boxes_per_delivery: int = Field(default=250, validation_alias="FARM_BOXES_PER_DELIVERY")
    box_delivery_value: float = Field(
        default=1000.0, validation_alias="FARM_BOX_DELIVERY_VALUE"
    )
    workload_plantation_weight: float = Field(
        default=0.01, validation_alias="FARM_WORKLOAD_PLANTATION_WEIGHT"
    )
    workload_animal_weight: float = Field(
        default=4.0, validation_alias="FARM_WORKLOAD_ANIMAL_WEIGHT"
    )
    workload_box_weight: float = Field(default=10.0, validation_alias="FARM_WORKLOAD_BOX_WEIGHT")
    workload_restock_weight: float = Field(
        default=0.02, validation_alias="FARM_WORKLOAD_RESTOCK_WEIGHT"
    )
    manager_reserve: float = Field(default=5000.0, validation_alias="FARM_MANAGER_RESERVE")
    seed_return_hours: int = Field(default=72, validation_alias="FARM_SEED_RETURN_HOURS")
    animal_return_hours: int = Field(default=24, validation_alias="FARM_ANIMAL_RETURN_HOURS")
    box_return_hours: int = Field(default=48, validation_alias="FARM_BOX_RETURN_HOURS")


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
