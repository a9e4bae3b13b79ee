from __future__ import annotations

import asyncio

import pytest

from circuity.errors import NetworkFailure, ValidationFailure
from circuity.models import (
    CalculationOutcome,
    CalculationResult,
    CalculationStatus,
    GeocodeCandidate,
    GeoPoint,
    HistoryRecord,
    LatLng,
    SelectionPhase,
    Units,
)
from circuity.session import CircuitySession


class FakeAPI:
    def __init__(self, *, delay_s: float = 0.0, healthy: bool = True, history_error: Exception | None = None) -> None:
        self.delay_s = delay_s
        self.healthy = healthy
        self.history_error = history_error
        self.calls: list[tuple[GeoPoint, GeoPoint]] = []

    async def calculate(self, origin: GeoPoint, destination: GeoPoint, *, units: Units) -> CalculationResult:
        self.calls.append((origin, destination))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return CalculationResult(
            origin=origin,
            destination=destination,
            straight_distance=100.0,
            road_distance=125.0,
            units=units,
            route_geometry=(origin.coordinates, destination.coordinates),
        )

    async def fetch_all_history(self) -> list[HistoryRecord]:
        if self.history_error is not None:
            raise self.history_error
        return [
            HistoryRecord.model_validate(
                {
                    "id": 1,
                    "created_at": "2024-01-01T00:00:00Z",
                    "origin_name": "Fresno",
                    "origin_lat": 36.74,
                    "origin_lng": -119.79,
                    "destination_name": "Modesto",
                    "destination_lat": 37.64,
                    "destination_lng": -120.99,
                    "straight_distance": 88.0,
                    "road_distance": 93.0,
                    "circuity_factor": 1.057,
                }
            )
        ]

    async def check_health(self) -> bool:
        return self.healthy


class FakeRouter:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch_route_geometry(self, origin: GeoPoint, destination: GeoPoint) -> tuple[LatLng, ...]:
        self.calls += 1
        return (origin.coordinates, destination.coordinates)


class FakeGeocoder:
    async def search(self, text: str) -> list[GeocodeCandidate]:
        return [
            GeocodeCandidate(
                id="1",
                display_name="Sacramento, Sacramento County, California, United States",
                lat=38.58,
                lng=-121.49,
            )
        ]


def _session(api: FakeAPI | None = None) -> CircuitySession:
    return CircuitySession(
        api=api or FakeAPI(),  # type: ignore[arg-type]
        router=FakeRouter(),  # type: ignore[arg-type]
        geocoder=FakeGeocoder(),
        debounce_s=0.0,
    )


def test_two_clicks_produce_attached_result() -> None:
    async def _scenario() -> tuple[CalculationOutcome | None, CircuitySession]:
        session = _session()
        session.click(34.05, -118.24)
        assert session.state.phase is SelectionPhase.ORIGIN_SET
        session.click(37.77, -122.42)
        outcome = await session.wait_for_calculation()
        await session.aclose()
        return outcome, session

    outcome, session = asyncio.run(_scenario())
    assert outcome is not None
    assert outcome.status is CalculationStatus.FULL
    assert outcome.circuity_factor == pytest.approx(1.25)
    assert session.state.result == outcome
    assert session.calculating is False


def test_third_click_discards_in_flight_result() -> None:
    api = FakeAPI(delay_s=0.05)

    async def _scenario() -> CircuitySession:
        session = _session(api)
        session.click(34.05, -118.24)
        session.click(37.77, -122.42)
        await asyncio.sleep(0.01)
        session.click(32.72, -117.16)
        assert session.calculating is False
        await session.wait_for_calculation()
        await session.aclose()
        return session

    session = asyncio.run(_scenario())
    assert session.state.phase is SelectionPhase.ORIGIN_SET
    assert session.state.result is None
    assert len(api.calls) == 1


def test_swap_during_flight_attaches_mirrored_result() -> None:
    api = FakeAPI(delay_s=0.02)

    async def _scenario() -> tuple[CalculationOutcome | None, CircuitySession]:
        session = _session(api)
        session.click(34.05, -118.24)
        session.click(37.77, -122.42)
        session.swap()
        outcome = await session.wait_for_calculation()
        await session.aclose()
        return outcome, session

    outcome, session = asyncio.run(_scenario())
    assert len(api.calls) == 1
    assert outcome is not None
    assert outcome.origin.coordinates == (37.77, -122.42)
    assert session.state.origin is not None
    assert session.state.origin.coordinates == (37.77, -122.42)


def test_clear_destination_during_flight_drops_result() -> None:
    api = FakeAPI(delay_s=0.05)

    async def _scenario() -> CircuitySession:
        session = _session(api)
        session.click(34.05, -118.24)
        session.click(37.77, -122.42)
        await asyncio.sleep(0.01)
        session.clear_destination()
        await session.wait_for_calculation()
        await session.aclose()
        return session

    session = asyncio.run(_scenario())
    assert session.state.phase is SelectionPhase.ORIGIN_SET
    assert session.state.result is None


def test_out_of_region_click_is_rejected() -> None:
    async def _scenario() -> CircuitySession:
        session = _session()
        with pytest.raises(ValidationFailure):
            session.click(51.5, -0.12)
        await session.aclose()
        return session

    assert asyncio.run(_scenario()).state.phase is SelectionPhase.EMPTY


def test_search_then_choose_sets_origin() -> None:
    async def _scenario() -> CircuitySession:
        session = _session()
        candidates = await session.origin_search.submit_query("sacramento")
        session.choose_candidate(candidates[0])
        await session.aclose()
        return session

    session = asyncio.run(_scenario())
    assert session.state.origin is not None
    assert session.state.origin.label == "Sacramento, Sacramento County"
    assert session.origin_search.candidates == ()


def test_health_and_history() -> None:
    async def _scenario() -> tuple[bool, int, CircuitySession]:
        session = _session(FakeAPI(healthy=False))
        healthy = await session.check_health()
        loaded = await session.load_history()
        await session.aclose()
        return healthy, loaded.total_records, session

    healthy, total, session = asyncio.run(_scenario())
    assert healthy is False
    assert session.backend_healthy is False
    assert total == 1


def test_history_failure_is_reported_on_browser() -> None:
    api = FakeAPI(history_error=NetworkFailure(reason_code="collaborator_unreachable", message="calc api down"))

    async def _scenario() -> CircuitySession:
        session = _session(api)
        await session.load_history()
        await session.aclose()
        return session

    session = asyncio.run(_scenario())
    assert session.history.error == "calc api down"
    assert session.history.records == ()
