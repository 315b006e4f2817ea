from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from django.conf import settings

from .domain import Address, PackageDetails


BASE_FARE = Decimal("1000")
PER_KG_RATE = Decimal("100")
INTER_CITY_SURCHARGE = Decimal("2000")

PRIORITY_MULTIPLIERS: Mapping[str, Decimal] = MappingProxyType(
    {
        "low": Decimal("1"),
        "medium": Decimal("1.2"),
        "high": Decimal("1.5"),
        "urgent": Decimal("2"),
    }
)


@dataclass(frozen=True)
class PricingPolicy:
    base_fare: Decimal = BASE_FARE
    per_kg_rate: Decimal = PER_KG_RATE
    inter_city_surcharge: Decimal = INTER_CITY_SURCHARGE
    priority_multipliers: Mapping[str, Decimal] = field(default_factory=lambda: PRIORITY_MULTIPLIERS)
    # Historically priority never changed the quote; keep that unless enabled.
    apply_priority_multiplier: bool = False
    # Cities are compared verbatim unless enabled ("Lagos" != "lagos ").
    normalize_city_names: bool = False

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        config = getattr(settings, "DELIVERY_PRICING", {}) or {}
        return cls(
            base_fare=Decimal(str(config.get("BASE_FARE", BASE_FARE))),
            per_kg_rate=Decimal(str(config.get("PER_KG_RATE", PER_KG_RATE))),
            inter_city_surcharge=Decimal(str(config.get("INTER_CITY_SURCHARGE", INTER_CITY_SURCHARGE))),
            apply_priority_multiplier=bool(config.get("APPLY_PRIORITY_MULTIPLIER", False)),
            normalize_city_names=bool(config.get("NORMALIZE_CITY_NAMES", False)),
        )

    def same_city(self, pickup: Address, destination: Address) -> bool:
        if self.normalize_city_names:
            return _normalize_city(pickup.city) == _normalize_city(destination.city)
        return pickup.city == destination.city


def _normalize_city(city: str) -> str:
    return " ".join(city.split()).casefold()


def calculate_price(
    package: PackageDetails,
    pickup: Address,
    destination: Address,
    priority: Optional[str] = None,
    policy: Optional[PricingPolicy] = None,
) -> Decimal:
    """Quote for a delivery, rounded half-up to a whole currency unit."""
    policy = policy or PricingPolicy()

    price = policy.base_fare
    if package.weight:
        price += Decimal(str(package.weight)) * policy.per_kg_rate

    if not policy.same_city(pickup, destination):
        price += policy.inter_city_surcharge

    if policy.apply_priority_multiplier and priority:
        price *= policy.priority_multipliers.get(priority, Decimal("1"))

    return price.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
