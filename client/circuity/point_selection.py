from __future__ import annotations

import logging
from dataclasses import dataclass

from .events import EventHub
from .logging_utils import log_event
from .models import CalculationOutcome, GeoPoint, SelectionPhase, SelectionState
from .region import BoundingRegion, default_region, point_from_click


@dataclass(frozen=True)
class SelectPoint:
    point: GeoPoint


@dataclass(frozen=True)
class ClearOrigin:
    pass


@dataclass(frozen=True)
class ClearDestination:
    pass


@dataclass(frozen=True)
class Swap:
    pass


@dataclass(frozen=True)
class ClearAll:
    pass


SelectionEvent = SelectPoint | ClearOrigin | ClearDestination | Swap | ClearAll


@dataclass(frozen=True)
class Transition:
    state: SelectionState
    pair_completed: bool = False


def apply_event(state: SelectionState, event: SelectionEvent) -> Transition:
    """Pure transition function. Every event is accepted in every phase."""
    phase = state.phase

    if isinstance(event, SelectPoint):
        if phase is SelectionPhase.EMPTY:
            return Transition(SelectionState(origin=event.point))
        if phase is SelectionPhase.ORIGIN_SET:
            return Transition(
                SelectionState(origin=state.origin, destination=event.point),
                pair_completed=True,
            )
        # A third point starts a new pair.
        return Transition(SelectionState(origin=event.point))

    if isinstance(event, (ClearOrigin, ClearAll)):
        return Transition(SelectionState())

    if isinstance(event, ClearDestination):
        if phase is SelectionPhase.COMPLETE:
            return Transition(SelectionState(origin=state.origin))
        return Transition(state)

    if isinstance(event, Swap):
        if phase is not SelectionPhase.COMPLETE:
            return Transition(state)
        # Distances are direction independent: keep the result, just mirror it.
        return Transition(
            SelectionState(
                origin=state.destination,
                destination=state.origin,
                result=state.result.reversed() if state.result is not None else None,
            )
        )

    raise TypeError(f"unknown selection event: {event!r}")


class PointSelectionStateMachine:
    """Owns the origin/destination selection.

    `changes` fires on every state change. `pair_completed` fires only when
    the machine enters the complete phase from origin-set, which is the one
    signal that should start a calculation.
    """

    def __init__(self, *, region: BoundingRegion | None = None) -> None:
        self._region = region or default_region()
        self._state = SelectionState()
        self.changes: EventHub[SelectionState] = EventHub()
        self.pair_completed: EventHub[SelectionState] = EventHub()

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def phase(self) -> SelectionPhase:
        return self._state.phase

    @property
    def origin(self) -> GeoPoint | None:
        return self._state.origin

    @property
    def destination(self) -> GeoPoint | None:
        return self._state.destination

    @property
    def result(self) -> CalculationOutcome | None:
        return self._state.result

    def dispatch(self, event: SelectionEvent) -> SelectionState:
        transition = apply_event(self._state, event)
        changed = transition.state != self._state
        self._state = transition.state
        if changed:
            self.changes.emit(self._state)
        if transition.pair_completed:
            self.pair_completed.emit(self._state)
        return self._state

    def select_point(self, point: GeoPoint) -> SelectionState:
        # Out-of-region points never reach the state.
        self._region.require(point)
        return self.dispatch(SelectPoint(point))

    def select_coordinates(self, lat: float, lng: float) -> SelectionState:
        return self.select_point(point_from_click(lat, lng, region=self._region))

    def clear_origin(self) -> SelectionState:
        return self.dispatch(ClearOrigin())

    def clear_destination(self) -> SelectionState:
        return self.dispatch(ClearDestination())

    def swap(self) -> SelectionState:
        return self.dispatch(Swap())

    def clear_all(self) -> SelectionState:
        return self.dispatch(ClearAll())

    def attach_result(self, outcome: CalculationOutcome) -> bool:
        """Store `outcome` if it belongs to the current pair; drop it otherwise."""
        current = self._state
        if current.origin is None or current.destination is None or outcome.pair != current.pair:
            log_event(
                "calculation_superseded",
                level=logging.DEBUG,
                phase=current.phase.value,
                status=outcome.status.value,
            )
            return False

        if outcome.origin.coordinates != current.origin.coordinates:
            outcome = outcome.reversed()

        self._state = SelectionState(origin=current.origin, destination=current.destination, result=outcome)
        self.changes.emit(self._state)
        return True
