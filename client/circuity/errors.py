from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "collaborator_unreachable",
        "collaborator_timeout",
        "collaborator_rejected",
        "collaborator_payload_invalid",
        "route_not_found",
        "point_outside_region",
        "coordinates_invalid",
        "superseded",
    }
)


@dataclass
class CircuityError(Exception):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    default_reason_code: ClassVar[str] = "collaborator_rejected"

    def __post_init__(self) -> None:
        self.reason_code = normalize_reason_code(self.reason_code, default=self.default_reason_code)

    def __str__(self) -> str:
        return self.message


@dataclass
class NetworkFailure(CircuityError):
    """Transport-level failure: the collaborator could not be reached in time."""

    default_reason_code: ClassVar[str] = "collaborator_unreachable"


@dataclass
class RemoteRejection(CircuityError):
    """The collaborator answered, but not with a usable success payload."""

    status_code: int | None = None


@dataclass
class ValidationFailure(CircuityError):
    """Input rejected locally, before any network call."""

    default_reason_code: ClassVar[str] = "coordinates_invalid"


@dataclass
class Superseded(CircuityError):
    """Work invalidated by newer state. Dropped silently, never shown to the user."""

    default_reason_code: ClassVar[str] = "superseded"

    generation: int | None = None


CollaboratorError = (NetworkFailure, RemoteRejection)


def normalize_reason_code(reason_code: str, *, default: str = "collaborator_rejected") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
