from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Protocol

from .cancellation import TokenSource
from .errors import CollaboratorError, Superseded
from .events import EventHub
from .logging_utils import log_event
from .models import GeocodeCandidate, GeoPoint
from .region import BoundingRegion, default_region
from .settings import settings


class Geocoder(Protocol):
    async def search(self, text: str) -> list[GeocodeCandidate]: ...


@dataclass(frozen=True)
class SearchState:
    query: str = ""
    candidates: tuple[GeocodeCandidate, ...] = ()
    error: str | None = None
    loading: bool = False


def filter_to_region(candidates: Iterable[GeocodeCandidate], region: BoundingRegion) -> list[GeocodeCandidate]:
    """Drop candidates outside the region box or whose name does not mention the region."""
    return [
        c
        for c in candidates
        if region.contains(c.lat, c.lng) and region.matches_name(c.display_name)
    ]


class GeocodeSearchController:
    """Debounced, cancellable free-text search.

    Every call to `submit_query` supersedes the previous one: a pending
    debounce timer is dropped and an in-flight request is cancelled, so only
    the latest query can ever write candidates (last query wins, not last
    response).
    """

    def __init__(
        self,
        geocoder: Geocoder,
        *,
        region: BoundingRegion | None = None,
        debounce_s: float | None = None,
    ) -> None:
        self._geocoder = geocoder
        self._region = region or default_region()
        self._debounce_s = settings.search_debounce_ms / 1000.0 if debounce_s is None else max(0.0, debounce_s)
        self._tokens = TokenSource()
        self._state = SearchState()
        self.changes: EventHub[SearchState] = EventHub()

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def candidates(self) -> tuple[GeocodeCandidate, ...]:
        return self._state.candidates

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def generation(self) -> int:
        return self._tokens.generation

    def _set_state(self, state: SearchState) -> None:
        if state == self._state:
            return
        self._state = state
        self.changes.emit(state)

    async def submit_query(self, text: str) -> list[GeocodeCandidate]:
        token = self._tokens.renew()

        if not text.strip():
            self._set_state(SearchState(query=text))
            return []

        self._set_state(replace(self._state, query=text, loading=False))
        try:
            await token.sleep(self._debounce_s)
            self._set_state(replace(self._state, loading=True, error=None))
            raw = await token.run(self._geocoder.search(text))
        except Superseded:
            return []
        except CollaboratorError as exc:
            log_event(
                "geocode_search_failed",
                level=logging.WARNING,
                query=text,
                reason_code=exc.reason_code,
                error=str(exc),
            )
            self._set_state(SearchState(query=text, error=str(exc)))
            return []

        candidates = filter_to_region(raw, self._region)
        self._set_state(SearchState(query=text, candidates=tuple(candidates)))
        return candidates

    def clear(self) -> None:
        self._tokens.cancel()
        self._set_state(SearchState())

    def choose(self, candidate: GeocodeCandidate) -> GeoPoint:
        """Turn a picked candidate into a point and reset the search."""
        point = self._region.require(candidate.to_point())
        self.clear()
        return point
