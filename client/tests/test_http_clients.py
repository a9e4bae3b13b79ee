from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Query, Request

from circuity.calculation_api import CalculationAPIClient
from circuity.calculation_orchestrator import RouteCalculationOrchestrator
from circuity.errors import NetworkFailure, RemoteRejection
from circuity.geocode_search import GeocodeSearchController, SearchState
from circuity.geocoding_nominatim import NominatimGeocoder
from circuity.metrics_store import metrics_snapshot, reset_metrics
from circuity.models import CalculationOutcome, CalculationStatus, GeoPoint
from circuity.routing_osrm import OSRMClient, transpose_geometry

LA = GeoPoint(lat=34.05, lng=-118.24, label="LA")
SF = GeoPoint(lat=37.77, lng=-122.42, label="SF")


def _history_row(record_id: int) -> dict[str, Any]:
    return {
        "id": record_id,
        "created_at": f"2024-01-{record_id:02d}T08:00:00",
        "origin_name": "Fresno",
        "origin_lat": 36.74,
        "origin_lng": -119.79,
        "destination_name": "Bakersfield",
        "destination_lat": 35.37,
        "destination_lng": -119.02,
        "straight_distance": 95.0,
        "road_distance": 108.0,
        "circuity_factor": 1.137,
        "calculation_time_ms": 11,
        "units": "miles",
    }


def _calc_app(*, history_rows: int = 5, bare_history: bool = False) -> tuple[FastAPI, list[dict[str, Any]]]:
    app = FastAPI()
    received: list[dict[str, Any]] = []

    @app.post("/calculate")
    async def calculate(request: Request) -> dict[str, Any]:
        body = await request.json()
        received.append(body)
        return {
            "origin": body["origin"],
            "destination": body["destination"],
            "straight_distance": 347.0,
            "road_distance": 382.0,
            "circuity_factor": 1.1,
            "efficiency_percent": 90.8,
            "units": body["units"],
            "calculation_time_ms": 34.6,
            "cached": False,
            "route_geometry": [[34.05, -118.24], [37.77, -122.42]],
        }

    @app.get("/history")
    async def history(page: int = Query(1), limit: int = Query(20)) -> Any:
        rows = [_history_row(i) for i in range(1, history_rows + 1)]
        if bare_history:
            return rows
        start = (page - 1) * limit
        total_pages = max(1, -(-len(rows) // limit))
        return {
            "items": rows[start : start + limit],
            "total_count": len(rows),
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        return {"total_calculations": 5, "average_circuity": 1.137}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app, received


def _calc_client(app: FastAPI) -> CalculationAPIClient:
    return CalculationAPIClient(base_url="http://calc.test", transport=httpx.ASGITransport(app=app))


def test_calculate_posts_wire_payload_and_parses_result() -> None:
    app, received = _calc_app()

    async def _scenario() -> Any:
        client = _calc_client(app)
        try:
            return await client.calculate(LA, SF, units="km")
        finally:
            await client.aclose()

    result = asyncio.run(_scenario())
    assert received == [
        {
            "origin": {"lat": 34.05, "lng": -118.24, "name": "LA"},
            "destination": {"lat": 37.77, "lng": -122.42, "name": "SF"},
            "units": "km",
        }
    ]
    assert result.units == "km"
    assert result.elapsed_ms == 35
    assert result.route_geometry == ((34.05, -118.24), (37.77, -122.42))
    assert result.circuity_factor == pytest.approx(382.0 / 347.0)


def test_server_error_maps_to_remote_rejection() -> None:
    app = FastAPI()

    @app.post("/calculate")
    async def calculate() -> None:
        raise HTTPException(status_code=503, detail="database warming up")

    async def _scenario() -> None:
        client = _calc_client(app)
        try:
            await client.calculate(LA, SF, units="miles")
        finally:
            await client.aclose()

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(_scenario())
    assert excinfo.value.status_code == 503
    assert excinfo.value.reason_code == "collaborator_rejected"
    assert str(excinfo.value) == "calculate 503: database warming up"


def test_unexpected_calculate_payload_is_rejected() -> None:
    app = FastAPI()

    @app.post("/calculate")
    async def calculate() -> dict[str, Any]:
        return {"road_distance": "far"}

    async def _scenario() -> None:
        client = _calc_client(app)
        try:
            await client.calculate(LA, SF, units="miles")
        finally:
            await client.aclose()

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(_scenario())
    assert excinfo.value.reason_code == "collaborator_payload_invalid"


def test_fetch_all_history_walks_pages() -> None:
    app, _ = _calc_app(history_rows=5)

    async def _scenario() -> list[Any]:
        client = _calc_client(app)
        try:
            return await client.fetch_all_history(limit=2)
        finally:
            await client.aclose()

    records = asyncio.run(_scenario())
    assert [r.id for r in records] == [1, 2, 3, 4, 5]
    assert records[0].origin.label == "Fresno"


def test_history_accepts_bare_list() -> None:
    app, _ = _calc_app(history_rows=3, bare_history=True)

    async def _scenario() -> Any:
        client = _calc_client(app)
        try:
            return await client.fetch_history_page()
        finally:
            await client.aclose()

    page = asyncio.run(_scenario())
    assert page.total_count == 3
    assert page.total_pages == 1
    assert not page.has_next


def test_stats_and_health() -> None:
    app, _ = _calc_app()

    async def _scenario() -> tuple[dict[str, Any], bool]:
        client = _calc_client(app)
        try:
            return await client.fetch_stats(), await client.check_health()
        finally:
            await client.aclose()

    stats, healthy = asyncio.run(_scenario())
    assert stats["total_calculations"] == 5
    assert healthy is True


def _refusing_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def test_health_is_false_when_unreachable() -> None:
    async def _scenario() -> bool:
        client = CalculationAPIClient(base_url="http://calc.test", transport=_refusing_transport())
        try:
            return await client.check_health()
        finally:
            await client.aclose()

    assert asyncio.run(_scenario()) is False


def test_transport_failures_map_to_network_failure() -> None:
    def timeout_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    async def _call(transport: httpx.AsyncBaseTransport) -> None:
        client = CalculationAPIClient(base_url="http://calc.test", transport=transport)
        try:
            await client.calculate(LA, SF, units="miles")
        finally:
            await client.aclose()

    with pytest.raises(NetworkFailure) as refused:
        asyncio.run(_call(_refusing_transport()))
    assert refused.value.reason_code == "collaborator_unreachable"

    with pytest.raises(NetworkFailure) as timed_out:
        asyncio.run(_call(httpx.MockTransport(timeout_handler)))
    assert timed_out.value.reason_code == "collaborator_timeout"


def test_non_json_body_is_payload_invalid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy login</html>")

    async def _scenario() -> None:
        client = CalculationAPIClient(base_url="http://calc.test", transport=httpx.MockTransport(handler))
        try:
            await client.fetch_stats()
        finally:
            await client.aclose()

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(_scenario())
    assert excinfo.value.reason_code == "collaborator_payload_invalid"


def test_transpose_geometry_swaps_to_lat_lng() -> None:
    route = {"geometry": {"coordinates": [[-118.24, 34.05], [-120.0, 36.0], [-122.42, 37.77]]}}
    assert transpose_geometry(route) == ((34.05, -118.24), (36.0, -120.0), (37.77, -122.42))

    with pytest.raises(RemoteRejection) as excinfo:
        transpose_geometry({"geometry": {"coordinates": [[-118.24, 34.05]]}})
    assert excinfo.value.reason_code == "route_not_found"


def test_osrm_fetches_full_geojson_route() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                "routes": [{"geometry": {"type": "LineString", "coordinates": [[-118.24, 34.05], [-122.42, 37.77]]}}],
            },
        )

    async def _scenario() -> Any:
        client = OSRMClient(base_url="http://osrm.test", profile="driving", transport=httpx.MockTransport(handler))
        try:
            return await client.fetch_route_geometry(LA, SF)
        finally:
            await client.aclose()

    geometry = asyncio.run(_scenario())
    assert geometry == ((34.05, -118.24), (37.77, -122.42))
    request = seen[0]
    assert request.url.path == "/route/v1/driving/-118.24,34.05;-122.42,37.77"
    assert request.url.params["overview"] == "full"
    assert request.url.params["geometries"] == "geojson"


def test_osrm_no_route_is_route_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route", "routes": []})

    async def _scenario() -> None:
        client = OSRMClient(base_url="http://osrm.test", transport=httpx.MockTransport(handler))
        try:
            await client.fetch_route_geometry(LA, SF)
        finally:
            await client.aclose()

    with pytest.raises(RemoteRejection) as excinfo:
        asyncio.run(_scenario())
    assert excinfo.value.reason_code == "route_not_found"


def test_nominatim_query_parameters_and_parsing() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "place_id": 101,
                    "display_name": "Santa Monica, Los Angeles County, California, United States",
                    "lat": "34.0195",
                    "lon": "-118.4912",
                },
                {"place_id": 102, "display_name": "Broken row"},
            ],
        )

    async def _scenario() -> Any:
        geocoder = NominatimGeocoder(
            base_url="http://nominatim.test",
            user_agent="circuity-tests",
            transport=httpx.MockTransport(handler),
        )
        try:
            return await geocoder.search("  santa monica ")
        finally:
            await geocoder.aclose()

    candidates = asyncio.run(_scenario())
    assert [c.id for c in candidates] == ["101"]

    request = seen[0]
    assert request.url.path == "/search"
    assert request.headers["user-agent"] == "circuity-tests"
    params = request.url.params
    assert params["q"] == "santa monica, California, USA"
    assert params["format"] == "json"
    assert params["limit"] == "8"
    assert params["addressdetails"] == "1"
    assert params["countrycodes"] == "us"
    assert params["viewbox"] == "-124.4,32.5,-114.6,42.0"
    assert params["bounded"] == "1"


def test_requests_are_recorded_in_metrics() -> None:
    reset_metrics()
    app, _ = _calc_app()

    async def _scenario() -> None:
        client = _calc_client(app)
        try:
            await client.calculate(LA, SF, units="miles")
            await client.fetch_stats()
        finally:
            await client.aclose()
        failing = CalculationAPIClient(base_url="http://calc.test", transport=_refusing_transport())
        try:
            with pytest.raises(NetworkFailure):
                await failing.calculate(LA, SF, units="miles")
        finally:
            await failing.aclose()

    asyncio.run(_scenario())
    snap = metrics_snapshot()
    assert snap["total_calls"] == 3
    assert snap["total_failures"] == 1
    collaborators = snap["collaborators"]
    assert isinstance(collaborators, dict)
    assert collaborators["calculate"]["call_count"] == 2
    assert collaborators["calculate"]["last_reason_code"] == "collaborator_unreachable"
    assert collaborators["stats"]["failure_count"] == 0


def _bad_gzip_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")

    return httpx.MockTransport(handler)


def test_undecodable_body_maps_to_network_failure() -> None:
    async def _scenario() -> None:
        client = CalculationAPIClient(base_url="http://calc.test", transport=_bad_gzip_transport())
        try:
            await client.fetch_stats()
        finally:
            await client.aclose()

    with pytest.raises(NetworkFailure) as excinfo:
        asyncio.run(_scenario())
    assert excinfo.value.reason_code == "collaborator_unreachable"
    assert "DecodingError" in str(excinfo.value)


def test_undecodable_geocode_body_surfaces_as_search_error() -> None:
    async def _scenario() -> SearchState:
        geocoder = NominatimGeocoder(base_url="http://nominatim.test", transport=_bad_gzip_transport())
        controller = GeocodeSearchController(geocoder, debounce_s=0.0)
        try:
            assert await controller.submit_query("Fresno") == []
        finally:
            await geocoder.aclose()
        return controller.state

    state = asyncio.run(_scenario())
    assert state.candidates == ()
    assert state.error is not None
    assert state.loading is False


def test_undecodable_bodies_make_calculation_unavailable() -> None:
    async def _scenario() -> CalculationOutcome | None:
        api = CalculationAPIClient(base_url="http://calc.test", transport=_bad_gzip_transport())
        router = OSRMClient(base_url="http://osrm.test", transport=_bad_gzip_transport())
        orchestrator = RouteCalculationOrchestrator(api, router, timeout_s=1)
        try:
            return await orchestrator.compute(LA, SF)
        finally:
            await api.aclose()
            await router.aclose()

    outcome = asyncio.run(_scenario())
    assert outcome is not None
    assert outcome.status is CalculationStatus.UNAVAILABLE
    assert outcome.primary_error is not None
    assert outcome.fallback_error is not None
