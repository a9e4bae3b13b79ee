from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """True inside docker-compose, where collaborators are addressed by service name."""
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_calc_api_base_url() -> str:
    # In docker-compose the calculation API is reachable by service name "api".
    return "http://api:8000" if _running_in_docker() else "http://localhost:8000"


def _default_osrm_base_url() -> str:
    # The local OSRM container is published on 5001 so it does not clash with the API.
    return "http://osrm:5000" if _running_in_docker() else "http://localhost:5001"


class Settings(BaseSettings):
    """Client configuration, read from the environment and an optional `.env` file."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "client/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    calc_api_base_url: str = Field(default_factory=_default_calc_api_base_url, alias="CALC_API_BASE_URL")
    osrm_base_url: str = Field(default_factory=_default_osrm_base_url, alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="driving", alias="OSRM_PROFILE")
    nominatim_base_url: str = Field(
        default="https://nominatim.openstreetmap.org",
        alias="NOMINATIM_BASE_URL",
    )
    # Nominatim's usage policy rejects requests without an identifying agent.
    nominatim_user_agent: str = Field(default="circuity-client/0.1", alias="NOMINATIM_USER_AGENT")

    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")
    log_file_name: str = Field(default="client.log.jsonl", alias="LOG_FILE_NAME")

    collaborator_timeout_s: float = Field(default=10.0, gt=0.0, le=120.0, alias="COLLABORATOR_TIMEOUT_S")
    search_debounce_ms: int = Field(default=300, ge=0, le=5000, alias="SEARCH_DEBOUNCE_MS")
    geocode_limit: int = Field(default=8, ge=1, le=50, alias="GEOCODE_LIMIT")
    geocode_query_suffix: str = Field(default="California, USA", alias="GEOCODE_QUERY_SUFFIX")
    geocode_country_codes: str = Field(default="us", alias="GEOCODE_COUNTRY_CODES")

    # Bounding region (California). Points and search results outside are rejected.
    region_south: float = Field(default=32.5, ge=-90, le=90, alias="REGION_SOUTH")
    region_north: float = Field(default=42.0, ge=-90, le=90, alias="REGION_NORTH")
    region_west: float = Field(default=-124.4, ge=-180, le=180, alias="REGION_WEST")
    region_east: float = Field(default=-114.6, ge=-180, le=180, alias="REGION_EAST")
    region_name_tokens: str = Field(default="California,CA", alias="REGION_NAME_TOKENS")

    default_units: str = Field(default="miles", alias="DEFAULT_UNITS")
    history_page_size: int = Field(default=20, ge=1, le=500, alias="HISTORY_PAGE_SIZE")
    history_fetch_limit: int = Field(default=100, ge=1, le=1000, alias="HISTORY_FETCH_LIMIT")
    history_max_pages: int = Field(default=50, ge=1, le=1000, alias="HISTORY_MAX_PAGES")

    @model_validator(mode="after")
    def _normalise(self) -> "Settings":
        if self.region_south > self.region_north:
            self.region_south, self.region_north = self.region_north, self.region_south
        if self.region_west > self.region_east:
            self.region_west, self.region_east = self.region_east, self.region_west
        units = str(self.default_units or "miles").strip().lower()
        if units not in {"miles", "km"}:
            units = "miles"
        self.default_units = units
        return self

    def region_name_token_list(self) -> list[str]:
        return [token.strip() for token in self.region_name_tokens.split(",") if token.strip()]


settings = Settings()
