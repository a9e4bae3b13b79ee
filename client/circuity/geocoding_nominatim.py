from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from .errors import RemoteRejection
from .http_common import build_async_client, request_json
from .models import GeocodeCandidate
from .region import BoundingRegion, default_region
from .settings import settings


class NominatimGeocoder:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        user_agent: str | None = None,
        limit: int | None = None,
        region: BoundingRegion | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.nominatim_base_url).rstrip("/")
        self.limit = int(limit or settings.geocode_limit)
        self.region = region or default_region()
        self._client = build_async_client(
            base_url=self.base_url,
            timeout_s=timeout_s,
            headers={"user-agent": user_agent or settings.nominatim_user_agent},
            trust_env=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def search_params(self, text: str) -> dict[str, str]:
        query = text.strip()
        if settings.geocode_query_suffix:
            query = f"{query}, {settings.geocode_query_suffix}"
        return {
            "q": query,
            "format": "json",
            "limit": str(self.limit),
            "addressdetails": "1",
            "countrycodes": settings.geocode_country_codes,
            "viewbox": self.region.viewbox(),
            "bounded": "1",
        }

    async def search(self, text: str) -> list[GeocodeCandidate]:
        data = await request_json(
            self._client,
            "GET",
            "/search",
            collaborator="geocode",
            params=self.search_params(text),
        )
        if not isinstance(data, list):
            raise RemoteRejection(
                reason_code="collaborator_payload_invalid",
                message="geocode returned a non-list body",
            )

        out: list[GeocodeCandidate] = []
        for row in data:
            candidate = _parse_row(row)
            if candidate is not None:
                out.append(candidate)
        return out


def _parse_row(row: Any) -> GeocodeCandidate | None:
    if not isinstance(row, dict):
        return None
    try:
        return GeocodeCandidate.model_validate(row)
    except ValidationError:
        # Rows without usable coordinates cannot be selected anyway.
        return None
