from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Units = Literal["miles", "km"]
LatLng = tuple[float, float]
PairKey = tuple[LatLng, LatLng]


def _pick_alias(data: dict[str, Any], target: str, aliases: tuple[str, ...]) -> None:
    if target in data:
        return
    for key in aliases:
        if key in data:
            data[target] = data[key]
            return


def _finite(v: float) -> float:
    if v != v or v in (float("inf"), float("-inf")):
        raise ValueError("coordinate must be finite")
    return v


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    label: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_wire_aliases(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        _pick_alias(data, "lng", ("lon", "longitude"))
        _pick_alias(data, "lat", ("latitude",))
        _pick_alias(data, "label", ("name", "display_name"))
        if data.get("label") is None:
            data["label"] = ""
        return data

    @field_validator("lat", "lng")
    @classmethod
    def finite(cls, v: float) -> float:
        return _finite(v)

    @property
    def coordinates(self) -> LatLng:
        return (self.lat, self.lng)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"lat": self.lat, "lng": self.lng}
        if self.label:
            payload["name"] = self.label
        return payload


def pair_key(origin: GeoPoint, destination: GeoPoint) -> PairKey:
    """Direction-independent identity of an origin/destination pair."""
    a, b = origin.coordinates, destination.coordinates
    return (a, b) if a <= b else (b, a)


def _position(value: object) -> LatLng | None:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    lat, lng = value[0], value[1]
    for v in (lat, lng):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            return None
    return (float(lat), float(lng))


def _geometry_or_none(value: object) -> tuple[LatLng, ...] | None:
    """Usable (lat, lng) line, or None.

    Extra position members (elevation, measures) are dropped. A line with any
    unusable position, or fewer than two points, is not drawable and counts
    as absent so the routing fallback supplies it instead.
    """
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    line: list[LatLng] = []
    for raw in value:
        position = _position(raw)
        if position is None:
            return None
        line.append(position)
    return tuple(line)


class CalculationResult(BaseModel):
    origin: GeoPoint
    destination: GeoPoint
    straight_distance: float = Field(..., ge=0)
    road_distance: float = Field(..., ge=0)
    # None is the sentinel for "undefined" (zero straight-line distance).
    circuity_factor: float | None = None
    efficiency_percent: float | None = None
    units: Units = "miles"
    elapsed_ms: int = Field(default=0, ge=0)
    was_cached: bool = False
    route_geometry: tuple[LatLng, ...] | None = None

    @model_validator(mode="before")
    @classmethod
    def accept_wire_aliases(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        _pick_alias(data, "straight_distance", ("straightDistance",))
        _pick_alias(data, "road_distance", ("roadDistance",))
        _pick_alias(data, "circuity_factor", ("circuityFactor",))
        _pick_alias(data, "efficiency_percent", ("efficiencyPercent",))
        _pick_alias(data, "elapsed_ms", ("calculation_time_ms", "elapsedMs"))
        _pick_alias(data, "was_cached", ("cached", "wasCached"))
        _pick_alias(data, "route_geometry", ("routeGeometry",))
        if isinstance(data.get("units"), str):
            data["units"] = data["units"].strip().lower()
        data["route_geometry"] = _geometry_or_none(data.get("route_geometry"))
        if data.get("elapsed_ms") is None:
            data.pop("elapsed_ms", None)
        elif isinstance(data["elapsed_ms"], float):
            data["elapsed_ms"] = int(round(data["elapsed_ms"]))
        return data

    @model_validator(mode="after")
    def derive_circuity(self) -> "CalculationResult":
        if self.straight_distance > 0:
            factor = self.road_distance / self.straight_distance
            self.circuity_factor = factor
            # Road distance can undershoot the great-circle figure through measurement noise.
            self.efficiency_percent = 100.0 if factor <= 1 else 100.0 / factor
        else:
            self.circuity_factor = None
            self.efficiency_percent = None
        return self

    def reversed(self) -> "CalculationResult":
        geometry = tuple(reversed(self.route_geometry)) if self.route_geometry else self.route_geometry
        return self.model_copy(
            update={
                "origin": self.destination,
                "destination": self.origin,
                "route_geometry": geometry,
            }
        )


class CalculationStatus(str, Enum):
    FULL = "full"
    GEOMETRY_ONLY = "geometry_only"
    UNAVAILABLE = "unavailable"


class CalculationOutcome(BaseModel):
    """What the orchestrator reports for one pair.

    `full` carries metrics (and geometry when any source produced it),
    `geometry_only` carries a drawable road line but no figures, and
    `unavailable` carries neither.
    """

    model_config = ConfigDict(frozen=True)

    status: CalculationStatus
    origin: GeoPoint
    destination: GeoPoint
    result: CalculationResult | None = None
    route_geometry: tuple[LatLng, ...] | None = None
    primary_error: str | None = None
    fallback_error: str | None = None

    @property
    def circuity_factor(self) -> float | None:
        return self.result.circuity_factor if self.result is not None else None

    @property
    def pair(self) -> PairKey:
        return pair_key(self.origin, self.destination)

    def reversed(self) -> "CalculationOutcome":
        geometry = tuple(reversed(self.route_geometry)) if self.route_geometry else self.route_geometry
        return self.model_copy(
            update={
                "origin": self.destination,
                "destination": self.origin,
                "result": self.result.reversed() if self.result is not None else None,
                "route_geometry": geometry,
            }
        )


class SelectionPhase(str, Enum):
    EMPTY = "empty"
    ORIGIN_SET = "origin_set"
    COMPLETE = "complete"


class SelectionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: GeoPoint | None = None
    destination: GeoPoint | None = None
    result: CalculationOutcome | None = None

    @model_validator(mode="after")
    def destination_requires_origin(self) -> "SelectionState":
        if self.destination is not None and self.origin is None:
            raise ValueError("destination cannot be set without an origin")
        if self.result is not None and self.destination is None:
            raise ValueError("a calculation result needs a complete pair")
        return self

    @property
    def phase(self) -> SelectionPhase:
        if self.origin is None:
            return SelectionPhase.EMPTY
        if self.destination is None:
            return SelectionPhase.ORIGIN_SET
        return SelectionPhase.COMPLETE

    @property
    def pair(self) -> PairKey | None:
        if self.origin is None or self.destination is None:
            return None
        return pair_key(self.origin, self.destination)


class GeocodeCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    @model_validator(mode="before")
    @classmethod
    def accept_nominatim_shape(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        _pick_alias(data, "id", ("place_id", "osm_id"))
        _pick_alias(data, "display_name", ("displayName", "name"))
        _pick_alias(data, "lng", ("lon",))
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        return data

    @field_validator("lat", "lng")
    @classmethod
    def finite(cls, v: float) -> float:
        return _finite(v)

    def short_label(self) -> str:
        parts = [part.strip() for part in self.display_name.split(",")]
        if len(parts) >= 2:
            return f"{parts[0]}, {parts[1]}"
        return parts[0]

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng, label=self.short_label())


class HistoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    created_at: datetime
    origin: GeoPoint
    destination: GeoPoint
    straight_distance: float
    road_distance: float
    circuity_factor: float | None = None
    elapsed_ms: int = 0
    units: str = "miles"

    @model_validator(mode="before")
    @classmethod
    def accept_flat_wire_shape(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        for role in ("origin", "destination"):
            if role not in data and f"{role}_lat" in data:
                data[role] = {
                    "lat": data.get(f"{role}_lat"),
                    "lng": data.get(f"{role}_lng", data.get(f"{role}_lon")),
                    "label": data.get(f"{role}_name"),
                }
        _pick_alias(data, "created_at", ("createdAt", "timestamp"))
        _pick_alias(data, "straight_distance", ("straightDistance",))
        _pick_alias(data, "road_distance", ("roadDistance",))
        _pick_alias(data, "circuity_factor", ("circuityFactor",))
        _pick_alias(data, "elapsed_ms", ("calculation_time_ms", "elapsedMs"))
        if isinstance(data.get("elapsed_ms"), float):
            data["elapsed_ms"] = int(round(data["elapsed_ms"]))
        return data

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @field_validator("circuity_factor")
    @classmethod
    def finite_or_none(cls, v: float | None) -> float | None:
        if v is None or not math.isfinite(v):
            return None
        return v


class HistoryPage(BaseModel):
    items: list[HistoryRecord] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    total_pages: int = Field(default=1, ge=0)
    has_next: bool = False
    has_prev: bool = False


class QueryView(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: tuple[HistoryRecord, ...] = ()
    total_matched: int = 0
    page: int = 1
    total_pages: int = 1
    total_records: int = 0

    @property
    def has_prev(self) -> bool:
        return 1 < self.page <= self.total_pages

    @property
    def has_next(self) -> bool:
        return 1 <= self.page < self.total_pages
