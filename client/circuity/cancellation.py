from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .errors import NetworkFailure, Superseded

T = TypeVar("T")


class CancellationToken:
    """Cancels the awaitables run through it, and turns that into `Superseded`.

    A token belongs to one logical operation (one search, one calculation).
    Cancelling it aborts whatever it is awaiting right now and makes every
    later `run` fail fast, so a stale operation can never apply its result.
    """

    def __init__(self, generation: int = 0) -> None:
        self.generation = generation
        self._cancelled = False
        self._tasks: set[asyncio.Future[object]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def _superseded(self, what: str) -> Superseded:
        return Superseded(
            reason_code="superseded",
            message=f"operation generation {self.generation} {what}",
            generation=self.generation,
        )

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise self._superseded("was superseded")

    async def run(self, awaitable: Awaitable[T], *, timeout_s: float | None = None) -> T:
        if self._cancelled and asyncio.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            if timeout_s is None:
                result = await task
            else:
                result = await asyncio.wait_for(task, timeout_s)
        except asyncio.CancelledError:
            if self._cancelled:
                raise self._superseded("was cancelled in flight") from None
            raise
        except TimeoutError as exc:
            if self._cancelled:
                raise self._superseded("was cancelled in flight") from exc
            raise NetworkFailure(
                reason_code="collaborator_timeout",
                message=f"collaborator did not answer within {timeout_s:g}s",
                details={"timeout_s": timeout_s},
            ) from exc
        except Exception as exc:
            # A failure that lands after cancellation belongs to a stale operation.
            if self._cancelled:
                raise self._superseded("failed after being superseded") from exc
            raise
        finally:
            self._tasks.discard(task)

        # Cancelled after the awaitable finished but before we resumed.
        self.raise_if_cancelled()
        return result

    async def sleep(self, delay_s: float) -> None:
        await self.run(asyncio.sleep(max(0.0, delay_s)))


class TokenSource:
    """Issues one live token at a time; renewing cancels the previous one."""

    def __init__(self) -> None:
        self._generation = 0
        self._current: CancellationToken | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def renew(self) -> CancellationToken:
        self.cancel()
        self._generation += 1
        self._current = CancellationToken(self._generation)
        return self._current

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._current and not token.cancelled
