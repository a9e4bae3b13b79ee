from __future__ import annotations

from typing import Any

import httpx

from .errors import RemoteRejection
from .http_common import build_async_client, request_json
from .models import GeoPoint, LatLng
from .settings import settings


def _route_not_found(message: str, **details: Any) -> RemoteRejection:
    return RemoteRejection(reason_code="route_not_found", message=message, details=details or None)


def transpose_geometry(route: dict[str, Any]) -> tuple[LatLng, ...]:
    """Return the route line as (lat, lng) pairs.

    OSRM GeoJSON geometry is a list of [lng, lat] positions.
    """
    geom = route.get("geometry")
    if not isinstance(geom, dict):
        raise _route_not_found("OSRM route missing geometry")

    coords = geom.get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        raise _route_not_found("OSRM geometry missing coordinates")

    out: list[LatLng] = []
    for pt in coords:
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and isinstance(pt[0], (int, float))
            and isinstance(pt[1], (int, float))
        ):
            out.append((float(pt[1]), float(pt[0])))
    if len(out) < 2:
        raise _route_not_found("OSRM geometry invalid")
    return tuple(out)


class OSRMClient:
    """Fallback router. Only the road geometry is used, never its distances."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        profile: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url).rstrip("/")
        self.profile = profile or settings.osrm_profile
        self._client = build_async_client(base_url=self.base_url, timeout_s=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def route_path(self, origin: GeoPoint, destination: GeoPoint) -> str:
        coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        return f"/route/v1/{self.profile}/{coords}"

    async def fetch_route_geometry(self, origin: GeoPoint, destination: GeoPoint) -> tuple[LatLng, ...]:
        data = await request_json(
            self._client,
            "GET",
            self.route_path(origin, destination),
            collaborator="osrm_route",
            params={"overview": "full", "geometries": "geojson"},
        )
        if not isinstance(data, dict):
            raise _route_not_found("OSRM returned a non-object body")

        if data.get("code") != "Ok":
            raise _route_not_found(
                f"OSRM error code={data.get('code')} message={data.get('message')}",
                code=data.get("code"),
            )

        routes = data.get("routes", [])
        if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
            raise _route_not_found("OSRM returned no routes")

        return transpose_geometry(routes[0])
