"""Game-balance constants for payroll, abuse and manager accounting."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from farm_ledger.config import get_settings

CENT = Decimal("0.01")


def money(value: Decimal | float | int | str) -> Decimal:
    """Round a monetary value to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class GameRules:
    """Named, overridable constants used across the reconciliation stages."""

    main_crop_price: Decimal = Decimal("0.15")
    specialty_crop_price: Decimal = Decimal("0.20")

    animal_delivery_value: Decimal = Decimal("160")
    animal_delivery_payment: Decimal = Decimal("60")
    animals_per_delivery: int = 4
    feed_per_delivery: int = 8
    delivery_lookback: timedelta = timedelta(minutes=120)
    delivery_lookahead: timedelta = timedelta(minutes=10)

    suspicious_item_charge: Decimal = Decimal("1.00")
    default_tool_cost: Decimal = Decimal("5.00")
    excess_feed_charge: Decimal = Decimal("0.50")
    stolen_animal_charge: Decimal = Decimal("40.00")
    stolen_feed_charge: Decimal = Decimal("1.00")
    feed_reasonable_cap: int = 100
    abuse_ignore_before: datetime | None = None

    plants_per_seed: int = 10
    boxes_per_delivery: int = 250
    box_delivery_value: Decimal = Decimal("1000")
    workload_plantation_weight: Decimal = Decimal("0.01")
    workload_animal_weight: Decimal = Decimal("4")
    workload_box_weight: Decimal = Decimal("10")
    workload_restock_weight: Decimal = Decimal("0.02")
    manager_reserve: Decimal = Decimal("5000")
    seed_return_window: timedelta = timedelta(hours=72)
    animal_return_window: timedelta = timedelta(hours=24)
    box_return_window: timedelta = timedelta(hours=48)

    def with_overrides(self, **changes: object) -> GameRules:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


def get_rules() -> GameRules:
    """Build GameRules from settings."""
    settings = get_settings()
    ignore_before = settings.abuse_ignore_before
    if ignore_before is not None and ignore_before.tzinfo is None:
        ignore_before = ignore_before.replace(tzinfo=UTC)
    return GameRules(
        main_crop_price=_decimal(settings.main_crop_price),
        specialty_crop_price=_decimal(settings.specialty_crop_price),
        animal_delivery_value=_decimal(settings.animal_delivery_value),
        animal_delivery_payment=_decimal(settings.animal_delivery_payment),
        animals_per_delivery=settings.animals_per_delivery,
        feed_per_delivery=settings.feed_per_delivery,
        delivery_lookback=timedelta(minutes=settings.delivery_lookback_minutes),
        delivery_lookahead=timedelta(minutes=settings.delivery_lookahead_minutes),
        suspicious_item_charge=_decimal(settings.suspicious_item_charge),
        default_tool_cost=_decimal(settings.default_tool_cost),
        excess_feed_charge=_decimal(settings.excess_feed_charge),
        stolen_animal_charge=_decimal(settings.stolen_animal_charge),
        stolen_feed_charge=_decimal(settings.stolen_feed_charge),
        feed_reasonable_cap=settings.feed_reasonable_cap,
        abuse_ignore_before=ignore_before,
        plants_per_seed=settings.plants_per_seed,
        boxes_per_delivery=settings.boxes_per_delivery,
        box_delivery_value=_decimal(settings.box_delivery_value),
        workload_plantation_weight=_decimal(settings.workload_plantation_weight),
        workload_animal_weight=_decimal(settings.workload_animal_weight),
        workload_box_weight=_decimal(settings.workload_box_weight),
        workload_restock_weight=_decimal(settings.workload_restock_weight),
        manager_reserve=_decimal(settings.manager_reserve),
        seed_return_window=timedelta(hours=settings.seed_return_hours),
        animal_return_window=timedelta(hours=settings.animal_return_hours),
        box_return_window=timedelta(hours=settings.box_return_hours),
    )
