from __future__ import annotations

import asyncio
import contextlib

from .calculation_api import CalculationAPIClient
from .calculation_orchestrator import RouteCalculationOrchestrator
from .geocode_search import GeocodeSearchController, Geocoder
from .geocoding_nominatim import NominatimGeocoder
from .history_query import HistoryBrowser
from .logging_utils import log_event
from .models import CalculationOutcome, GeocodeCandidate, QueryView, SelectionPhase, SelectionState, Units
from .point_selection import PointSelectionStateMachine
from .region import BoundingRegion, default_region
from .routing_osrm import OSRMClient


class CircuitySession:
    """One user's session: selection, search, calculation and history.

    Must be driven from inside a running event loop, because completing a
    pair schedules the calculation as a task on that loop.
    """

    def __init__(
        self,
        *,
        api: CalculationAPIClient | None = None,
        router: OSRMClient | None = None,
        geocoder: Geocoder | None = None,
        region: BoundingRegion | None = None,
        units: Units | None = None,
        debounce_s: float | None = None,
    ) -> None:
        self.region = region or default_region()
        self._owned: list[CalculationAPIClient | OSRMClient | NominatimGeocoder] = []

        if api is None:
            api = CalculationAPIClient()
            self._owned.append(api)
        if router is None:
            router = OSRMClient()
            self._owned.append(router)
        if geocoder is None:
            geocoder = NominatimGeocoder(region=self.region)
            self._owned.append(geocoder)

        self.api = api
        self.selection = PointSelectionStateMachine(region=self.region)
        self.orchestrator = RouteCalculationOrchestrator(
            api,
            router,
            units=units,
            current_pair=lambda: self.selection.state.pair,
        )
        self.origin_search = GeocodeSearchController(geocoder, region=self.region, debounce_s=debounce_s)
        self.destination_search = GeocodeSearchController(geocoder, region=self.region, debounce_s=debounce_s)
        self.history = HistoryBrowser()
        self.backend_healthy: bool | None = None
        self._pending: asyncio.Task[CalculationOutcome | None] | None = None

        self.selection.changes.subscribe(self._on_selection_changed)
        self.selection.pair_completed.subscribe(self._on_pair_completed)
        self.orchestrator.results.subscribe(self._on_outcome)

    @property
    def state(self) -> SelectionState:
        return self.selection.state

    @property
    def calculating(self) -> bool:
        return self.orchestrator.loading

    def _on_selection_changed(self, state: SelectionState) -> None:
        if state.phase is not SelectionPhase.COMPLETE:
            self.orchestrator.cancel()

    def _on_pair_completed(self, state: SelectionState) -> None:
        if state.origin is None or state.destination is None:
            return
        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(self.orchestrator.compute(state.origin, state.destination))

    def _on_outcome(self, outcome: CalculationOutcome) -> None:
        self.selection.attach_result(outcome)

    def click(self, lat: float, lng: float) -> SelectionState:
        return self.selection.select_coordinates(lat, lng)

    def choose_candidate(self, candidate: GeocodeCandidate, *, search: GeocodeSearchController | None = None) -> SelectionState:
        controller = search or self.origin_search
        return self.selection.select_point(controller.choose(candidate))

    def swap(self) -> SelectionState:
        return self.selection.swap()

    def clear_origin(self) -> SelectionState:
        return self.selection.clear_origin()

    def clear_destination(self) -> SelectionState:
        return self.selection.clear_destination()

    def clear_all(self) -> SelectionState:
        return self.selection.clear_all()

    async def wait_for_calculation(self) -> CalculationOutcome | None:
        """Wait for the latest scheduled calculation, then return the stored outcome."""
        pending = self._pending
        if pending is not None:
            await pending
        return self.selection.result

    async def check_health(self) -> bool:
        self.backend_healthy = await self.api.check_health()
        log_event("backend_health_checked", healthy=self.backend_healthy)
        return self.backend_healthy

    async def load_history(self) -> QueryView:
        return await self.history.load(self.api)

    async def aclose(self) -> None:
        self.orchestrator.cancel()
        self.origin_search.clear()
        self.destination_search.clear()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending
        for client in self._owned:
            await client.aclose()
