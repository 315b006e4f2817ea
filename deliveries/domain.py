"""Value types shared by the delivery lifecycle.

Coordinates are held as named ``latitude`` / ``longitude`` fields. The GeoJSON
``[longitude, latitude]`` ordering only appears when a value is serialized for
storage or for the API.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .exceptions import DeliveryValidationError


PACKAGE_CATEGORIES = ("documents", "electronics", "food", "clothing", "furniture", "other")

# Upper bounds keep a quote inside Delivery.price (12 digits, 2 decimals).
MAX_WEIGHT_KG = 100_000
MAX_DIMENSION_CM = 10_000
MAX_DECLARED_VALUE = 1_000_000_000


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def to_geojson(self) -> Dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @classmethod
    def from_geojson(cls, value: Mapping[str, Any]) -> "GeoPoint":
        coordinates = value.get("coordinates")
        if not isinstance(coordinates, (list, tuple)) or len(coordinates) != 2:
            raise ValueError("coordinates must be a [longitude, latitude] pair")
        longitude, latitude = coordinates
        return cls(latitude=float(latitude), longitude=float(longitude))

    @classmethod
    def parse(cls, value: Any) -> Optional["GeoPoint"]:
        """Accept a GeoPoint, a GeoJSON point or a ``{latitude, longitude}`` mapping."""
        if value is None or value == {}:
            return None
        if isinstance(value, GeoPoint):
            return value
        if not isinstance(value, Mapping):
            raise ValueError("location must be an object")
        if "coordinates" in value:
            return cls.from_geojson(value)
        if "latitude" in value and "longitude" in value:
            return cls(latitude=float(value["latitude"]), longitude=float(value["longitude"]))
        raise ValueError("location must be a GeoJSON point or have latitude and longitude")

    @classmethod
    def from_fields(cls, latitude: Optional[float], longitude: Optional[float]) -> Optional["GeoPoint"]:
        if latitude is None or longitude is None:
            return None
        return cls(latitude=latitude, longitude=longitude)


def _required_text(data: Mapping[str, Any], key: str, prefix: str) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        raise DeliveryValidationError(f"{prefix}.{key}")
    return str(value)


def _optional_number(data: Mapping[str, Any], key: str, prefix: str, maximum: float) -> Optional[float]:
    value = data.get(key)
    if value is None or value == "":
        return None
    name = f"{prefix}.{key}"
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise DeliveryValidationError(name, f"{name} must be a number")
    if not math.isfinite(number):
        raise DeliveryValidationError(name, f"{name} must be a finite number")
    if number < 0:
        raise DeliveryValidationError(name, f"{name} must not be negative")
    if number > maximum:
        raise DeliveryValidationError(name, f"{name} must not exceed {maximum}")
    return number


@dataclass(frozen=True)
class Address:
    address: str
    city: str
    state: str
    zip_code: str = ""
    location: Optional[GeoPoint] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], name: str) -> "Address":
        if not data or not isinstance(data, Mapping):
            raise DeliveryValidationError(name)
        try:
            location = GeoPoint.parse(data.get("location"))
        except (TypeError, ValueError) as exc:
            raise DeliveryValidationError(f"{name}.location", f"{name}.location: {exc}")
        return cls(
            address=_required_text(data, "address", name),
            city=_required_text(data, "city", name),
            state=_required_text(data, "state", name),
            zip_code=str(data.get("zip_code") or ""),
            location=location,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "location": self.location.to_geojson() if self.location else None,
        }

    def one_line(self) -> str:
        return f"{self.address}, {self.city}"


@dataclass(frozen=True)
class PackageDetails:
    description: str
    weight: Optional[float] = None
    dimensions: Dict[str, float] = field(default_factory=dict)
    value: Optional[float] = None
    category: str = "other"

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], name: str = "package_details") -> "PackageDetails":
        if not data or not isinstance(data, Mapping):
            raise DeliveryValidationError(name)
        category = data.get("category") or "other"
        if category not in PACKAGE_CATEGORIES:
            raise DeliveryValidationError(f"{name}.category", f"{name}.category must be one of {', '.join(PACKAGE_CATEGORIES)}")

        raw_dimensions = data.get("dimensions") or {}
        if not isinstance(raw_dimensions, Mapping):
            raise DeliveryValidationError(f"{name}.dimensions", f"{name}.dimensions must be an object")
        dimensions = {}
        for key in ("length", "width", "height"):
            number = _optional_number(raw_dimensions, key, f"{name}.dimensions", MAX_DIMENSION_CM)
            if number is not None:
                dimensions[key] = number

        return cls(
            description=_required_text(data, "description", name),
            weight=_optional_number(data, "weight", name, MAX_WEIGHT_KG),
            dimensions=dimensions,
            value=_optional_number(data, "value", name, MAX_DECLARED_VALUE),
            category=category,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "weight": self.weight,
            "dimensions": dict(self.dimensions),
            "value": self.value,
            "category": self.category,
        }
