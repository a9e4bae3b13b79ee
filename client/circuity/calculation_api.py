from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError

from .errors import RemoteRejection
from .http_common import build_async_client, request_json
from .metrics_store import record_call
from .models import CalculationResult, GeoPoint, HistoryPage, HistoryRecord, Units
from .settings import settings


def _invalid_payload(collaborator: str, exc: ValidationError) -> RemoteRejection:
    return RemoteRejection(
        reason_code="collaborator_payload_invalid",
        message=f"{collaborator} returned an unexpected payload ({exc.error_count()} validation errors)",
        details={"collaborator": collaborator, "errors": exc.errors(include_url=False)[:5]},
    )


class CalculationAPIClient:
    """HTTP client for the circuity calculation service and its history store."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.calc_api_base_url).rstrip("/")
        self._client = build_async_client(base_url=self.base_url, timeout_s=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def calculate(self, origin: GeoPoint, destination: GeoPoint, *, units: Units) -> CalculationResult:
        payload = {
            "origin": origin.to_wire(),
            "destination": destination.to_wire(),
            "units": units,
        }
        data = await request_json(self._client, "POST", "/calculate", collaborator="calculate", json=payload)
        if not isinstance(data, dict):
            raise RemoteRejection(
                reason_code="collaborator_payload_invalid",
                message="calculate returned a non-object body",
            )
        # Older API builds do not echo the endpoints back.
        data.setdefault("origin", payload["origin"])
        data.setdefault("destination", payload["destination"])
        try:
            return CalculationResult.model_validate(data)
        except ValidationError as exc:
            raise _invalid_payload("calculate", exc) from exc

    async def fetch_history_page(
        self,
        *,
        page: int = 1,
        limit: int | None = None,
        search: str | None = None,
        sort_by: str | None = None,
    ) -> HistoryPage:
        params: dict[str, Any] = {
            "page": max(1, int(page)),
            "limit": int(limit or settings.history_fetch_limit),
        }
        if search:
            params["search"] = search
        if sort_by:
            params["sort_by"] = sort_by

        data = await request_json(self._client, "GET", "/history", collaborator="history", params=params)
        try:
            if isinstance(data, list):
                # Unpaginated deployments return the bare record list.
                items = [HistoryRecord.model_validate(row) for row in data]
                return HistoryPage(
                    items=items,
                    total_count=len(items),
                    page=1,
                    limit=max(1, len(items)),
                    total_pages=1,
                )
            return HistoryPage.model_validate(data)
        except ValidationError as exc:
            raise _invalid_payload("history", exc) from exc

    async def fetch_all_history(self, *, limit: int | None = None, max_pages: int | None = None) -> list[HistoryRecord]:
        """Walk the history store page by page and return every record."""
        page_cap = int(max_pages or settings.history_max_pages)
        records: list[HistoryRecord] = []
        page = 1
        while page <= page_cap:
            chunk = await self.fetch_history_page(page=page, limit=limit)
            records.extend(chunk.items)
            if not chunk.has_next or page >= chunk.total_pages or not chunk.items:
                break
            page += 1
        return records

    async def fetch_stats(self) -> dict[str, Any]:
        data = await request_json(self._client, "GET", "/stats", collaborator="stats")
        if not isinstance(data, dict):
            raise RemoteRejection(
                reason_code="collaborator_payload_invalid",
                message="stats returned a non-object body",
            )
        return data

    async def check_health(self) -> bool:
        started = time.perf_counter()
        healthy = False
        try:
            resp = await self._client.get("/health")
            healthy = resp.is_success
        except httpx.HTTPError:
            healthy = False
        finally:
            record_call(
                "health",
                duration_ms=(time.perf_counter() - started) * 1000.0,
                reason_code=None if healthy else "collaborator_unreachable",
            )
        return healthy
