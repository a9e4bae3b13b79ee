from __future__ import annotations

import time
from typing import Any

import httpx

from .errors import CircuityError, NetworkFailure, RemoteRejection
from .metrics_store import record_call
from .settings import settings


def build_async_client(
    *,
    base_url: str,
    timeout_s: float | None = None,
    headers: dict[str, str] | None = None,
    trust_env: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    timeout = float(timeout_s if timeout_s is not None else settings.collaborator_timeout_s)
    # trust_env=False keeps proxy env vars from hijacking requests to localhost services.
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=httpx.Timeout(timeout, connect=min(5.0, timeout)),
        trust_env=trust_env,
        headers={"accept": "application/json", **(headers or {})},
        transport=transport,
    )


def format_http_error(collaborator: str, resp: httpx.Response) -> str:
    """Best-effort decode of a collaborator's error payload."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            detail = data.get("detail") or data.get("message") or data.get("error")
            code = data.get("code")
            if code and detail:
                return f"{collaborator} {resp.status_code} {code}: {detail}"
            if detail:
                return f"{collaborator} {resp.status_code}: {detail}"
            if code:
                return f"{collaborator} {resp.status_code} {code}"
    except ValueError:
        # fall through to text
        pass

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"{collaborator} {resp.status_code}: {body}"
    return f"{collaborator} HTTP {resp.status_code}"


def _describe(exc: Exception) -> str:
    # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else f"{type(exc).__name__}: {exc!r}"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    collaborator: str,
    params: dict[str, Any] | None = None,
    json: Any = None,
) -> Any:
    """Send one request and return the decoded JSON body.

    Raises NetworkFailure for transport or decoding problems and RemoteRejection for
    non-2xx answers or bodies that are not JSON. Never retries.
    """
    started = time.perf_counter()
    reason_code: str | None = None
    try:
        try:
            resp = await client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise NetworkFailure(
                reason_code="collaborator_timeout",
                message=f"{collaborator} timed out ({_describe(exc)})",
                details={"collaborator": collaborator, "url": url},
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkFailure(
                reason_code="collaborator_unreachable",
                message=f"{collaborator} unreachable ({_describe(exc)})",
                details={"collaborator": collaborator, "url": url},
            ) from exc
        except httpx.HTTPError as exc:
            # Decoding and protocol errors are not TransportErrors.
            raise NetworkFailure(
                reason_code="collaborator_unreachable",
                message=f"{collaborator} failed ({_describe(exc)})",
                details={"collaborator": collaborator, "url": url},
            ) from exc

        if not resp.is_success:
            raise RemoteRejection(
                reason_code="collaborator_rejected",
                message=format_http_error(collaborator, resp),
                details={"collaborator": collaborator, "url": url},
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteRejection(
                reason_code="collaborator_payload_invalid",
                message=f"{collaborator} returned a non-JSON body",
                details={"collaborator": collaborator, "url": url},
                status_code=resp.status_code,
            ) from exc
    except CircuityError as exc:
        reason_code = exc.reason_code
        raise
    finally:
        record_call(
            collaborator,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            reason_code=reason_code,
        )
