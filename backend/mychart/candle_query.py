"""Cancellable queries keyed by their parameters.

Each parameter change bumps a generation counter, cancels the in-flight
task and starts a new one. A completion is applied only if its generation
is still current, so a slow response for old parameters can never
overwrite data fetched for newer ones. Failures are stored on the state
and the last good result is kept.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, List, Optional, Tuple, TypeVar

from .exceptions import ChartError
from .models import Bar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class QueryState(Generic[T]):
    data: Optional[T] = None
    params: Optional[Tuple[Any, ...]] = None
    loading: bool = False
    error: Optional[str] = None


class Query(Generic[T]):
    def __init__(self, fetch: Callable[..., Awaitable[T]], name: str = "query") -> None:
        self._fetch = fetch
        self._name = name
        self._generation = 0
        self._task: Optional["asyncio.Task[None]"] = None
        self._listeners: List[Callable[[QueryState[T]], None]] = []
        self._state: QueryState[T] = QueryState()

    @property
    def state(self) -> QueryState[T]:
        return self._state

    @state.setter
    def state(self, value: QueryState[T]) -> None:
        self._state = value
        for listener in list(self._listeners):
            listener(value)

    def subscribe(self, listener: Callable[[QueryState[T]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def task(self) -> Optional["asyncio.Task[None]"]:
        return self._task

    def set_params(self, *params: Any) -> "asyncio.Task[None]":
        """Start fetching for ``params``, superseding any earlier request."""
        self._generation += 1
        generation = self._generation
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.state = replace(self.state, params=params, loading=True, error=None)
        self._task = asyncio.create_task(self._run(generation, params), name=f"{self._name}-{generation}")
        return self._task

    async def refresh(self) -> None:
        if self.state.params is None:
            return
        await self.set_params(*self.state.params)

    async def close(self) -> None:
        """Teardown: invalidate and cancel whatever is in flight."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = replace(self.state, loading=False)

    async def _run(self, generation: int, params: Tuple[Any, ...]) -> None:
        try:
            data = await self._fetch(*params)
        except asyncio.CancelledError:
            logger.debug("%s request %d cancelled", self._name, generation)
            raise
        except (ChartError, ValueError) as exc:
            if generation != self._generation:
                return
            message = getattr(exc, "message", str(exc))
            logger.warning("%s request %s failed: %s", self._name, params, message)
            self.state = replace(self.state, loading=False, error=message)
            return
        except Exception as exc:  # pylint: disable=broad-except
            if generation != self._generation:
                return
            logger.exception("%s request %s crashed", self._name, params)
            self.state = replace(self.state, loading=False, error=str(exc))
            return

        if generation != self._generation:
            logger.debug("Dropping stale %s response for %s", self._name, params)
            return
        self.state = QueryState(data=data, params=params, loading=False, error=None)


class CandleQuery(Query[Tuple[Bar, ...]]):
    """Series buffer for one (symbol, timeframe, count) at a time."""

    def __init__(self, fetch_candles: Callable[[str, str, int], Awaitable[Any]]) -> None:
        async def fetch(symbol: str, timeframe: str, count: int) -> Tuple[Bar, ...]:
            return tuple(await fetch_candles(symbol, timeframe, count))

        super().__init__(fetch, name="candles")

    @property
    def bars(self) -> Tuple[Bar, ...]:
        return self.state.data or ()
