from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationFailure
from .models import GeoPoint
from .settings import settings

# (minimum latitude, label) bands, checked top-down, for click-placed points.
_LATITUDE_BANDS: tuple[tuple[float, str], ...] = (
    (40.0, "Northern CA"),
    (37.0, "Bay Area"),
    (35.0, "Central CA"),
    (34.0, "Central Coast"),
)
_SOUTHERN_BAND = "Southern CA"


@dataclass(frozen=True)
class BoundingRegion:
    south: float
    north: float
    west: float
    east: float
    name_tokens: tuple[str, ...] = ()

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def contains_point(self, point: GeoPoint) -> bool:
        return self.contains(point.lat, point.lng)

    def matches_name(self, display_name: str) -> bool:
        if not self.name_tokens:
            return True
        return any(token in display_name for token in self.name_tokens)

    def require(self, point: GeoPoint) -> GeoPoint:
        """Return `point` unchanged, or raise ValidationFailure if it lies outside."""
        if not self.contains_point(point):
            raise ValidationFailure(
                reason_code="point_outside_region",
                message=f"Point ({point.lat:.4f}, {point.lng:.4f}) is outside the supported region",
                details={"lat": point.lat, "lng": point.lng, "bounds": self.bounds()},
            )
        return point

    def bounds(self) -> dict[str, float]:
        return {"south": self.south, "north": self.north, "west": self.west, "east": self.east}

    def viewbox(self) -> str:
        """Nominatim viewbox, x1,y1,x2,y2 in (lng, lat) order."""
        return f"{self.west},{self.south},{self.east},{self.north}"


def default_region() -> BoundingRegion:
    return BoundingRegion(
        south=settings.region_south,
        north=settings.region_north,
        west=settings.region_west,
        east=settings.region_east,
        name_tokens=tuple(settings.region_name_token_list()),
    )


def format_location_name(lat: float, lng: float) -> str:
    coords = f"{lat:.4f}, {lng:.4f}"
    for min_lat, label in _LATITUDE_BANDS:
        if lat > min_lat:
            return f"{coords} ({label})"
    return f"{coords} ({_SOUTHERN_BAND})"


def point_from_click(lat: float, lng: float, *, region: BoundingRegion | None = None) -> GeoPoint:
    """Build a labelled point for a map click, rejecting clicks outside the region."""
    try:
        point = GeoPoint(lat=lat, lng=lng, label=format_location_name(lat, lng))
    except ValueError as exc:
        raise ValidationFailure(
            reason_code="coordinates_invalid",
            message=f"Invalid coordinates ({lat}, {lng})",
            details={"lat": lat, "lng": lng},
        ) from exc
    return (region or default_region()).require(point)
