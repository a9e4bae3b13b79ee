from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, cast

from .cancellation import CancellationToken, TokenSource
from .errors import CollaboratorError, Superseded
from .events import EventHub
from .logging_utils import log_event
from .models import (
    CalculationOutcome,
    CalculationResult,
    CalculationStatus,
    GeoPoint,
    LatLng,
    PairKey,
    Units,
    pair_key,
)
from .settings import settings


class Calculator(Protocol):
    async def calculate(self, origin: GeoPoint, destination: GeoPoint, *, units: Units) -> CalculationResult: ...


class GeometryRouter(Protocol):
    async def fetch_route_geometry(self, origin: GeoPoint, destination: GeoPoint) -> tuple[LatLng, ...]: ...


class RouteCalculationOrchestrator:
    """Primary calculation with a geometry-only routing fallback.

    One computation is live at a time: `compute` cancels whatever was in
    flight before starting. Outcomes are checked against `current_pair`
    (normally the selection state) when they resolve, and stale ones are
    dropped instead of emitted.
    """

    def __init__(
        self,
        calculator: Calculator,
        router: GeometryRouter,
        *,
        units: Units | None = None,
        timeout_s: float | None = None,
        current_pair: Callable[[], PairKey | None] | None = None,
    ) -> None:
        self._calculator = calculator
        self._router = router
        self.units: Units = units or cast(Units, settings.default_units)
        self._timeout_s = float(timeout_s if timeout_s is not None else settings.collaborator_timeout_s)
        self._current_pair = current_pair
        self._tokens = TokenSource()
        self._loading = False
        self.results: EventHub[CalculationOutcome] = EventHub()
        self.loading_changes: EventHub[bool] = EventHub()

    @property
    def loading(self) -> bool:
        return self._loading

    def _set_loading(self, loading: bool) -> None:
        if loading != self._loading:
            self._loading = loading
            self.loading_changes.emit(loading)

    def cancel(self) -> None:
        self._tokens.cancel()
        self._set_loading(False)

    async def compute(self, origin: GeoPoint, destination: GeoPoint) -> CalculationOutcome | None:
        """Run one calculation. Returns None when the outcome was superseded."""
        token = self._tokens.renew()
        self._set_loading(True)
        try:
            outcome = await self._calculate(origin, destination, token)
        except Superseded as exc:
            log_event(
                "calculation_superseded",
                level=logging.DEBUG,
                generation=exc.generation,
            )
            return None
        finally:
            if self._tokens.is_current(token):
                self._set_loading(False)

        if self._current_pair is not None and self._current_pair() != pair_key(origin, destination):
            log_event("calculation_superseded", level=logging.DEBUG, generation=token.generation)
            return None

        log_event(
            "calculation_completed",
            status=outcome.status.value,
            circuity_factor=outcome.circuity_factor,
            has_geometry=outcome.route_geometry is not None,
        )
        self.results.emit(outcome)
        return outcome

    async def _calculate(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        token: CancellationToken,
    ) -> CalculationOutcome:
        result: CalculationResult | None = None
        primary_error: str | None = None
        try:
            result = await token.run(
                self._calculator.calculate(origin, destination, units=self.units),
                timeout_s=self._timeout_s,
            )
        except CollaboratorError as exc:
            primary_error = str(exc)
            log_event(
                "calculation_primary_failed",
                level=logging.WARNING,
                reason_code=exc.reason_code,
                error=primary_error,
            )

        if result is not None and result.route_geometry:
            return CalculationOutcome(
                status=CalculationStatus.FULL,
                origin=origin,
                destination=destination,
                result=result,
                route_geometry=result.route_geometry,
            )

        geometry: tuple[LatLng, ...] | None = None
        fallback_error: str | None = None
        try:
            geometry = await token.run(
                self._router.fetch_route_geometry(origin, destination),
                timeout_s=self._timeout_s,
            )
        except CollaboratorError as exc:
            fallback_error = str(exc)
            log_event(
                "calculation_fallback_failed",
                level=logging.WARNING,
                reason_code=exc.reason_code,
                error=fallback_error,
                primary_ok=result is not None,
            )

        if result is not None:
            if geometry:
                result = result.model_copy(update={"route_geometry": geometry})
            return CalculationOutcome(
                status=CalculationStatus.FULL,
                origin=origin,
                destination=destination,
                result=result,
                route_geometry=geometry or None,
                fallback_error=fallback_error,
            )

        if geometry:
            return CalculationOutcome(
                status=CalculationStatus.GEOMETRY_ONLY,
                origin=origin,
                destination=destination,
                route_geometry=geometry,
                primary_error=primary_error,
            )

        return CalculationOutcome(
            status=CalculationStatus.UNAVAILABLE,
            origin=origin,
            destination=destination,
            primary_error=primary_error,
            fallback_error=fallback_error,
        )
