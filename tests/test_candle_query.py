import asyncio

import pytest

from conftest import make_bars
from mychart.candle_query import CandleQuery, Query
from mychart.exceptions import UpstreamError


class GatedFetch:
    """Fetch whose calls block until the test releases them by symbol."""

    def __init__(self, finish_when_cancelled=False):
        self.gates = {}
        self.finish_when_cancelled = finish_when_cancelled

    async def __call__(self, symbol, timeframe, count):
        gate = asyncio.get_running_loop().create_future()
        self.gates[symbol] = gate
        try:
            await gate
        except asyncio.CancelledError:
            if not self.finish_when_cancelled:
                raise
        if symbol == "BAD":
            raise UpstreamError("upstream said no")
        return make_bars([float(len(symbol))] * count)


@pytest.mark.asyncio
async def test_result_is_published():
    fetch = GatedFetch()
    query = CandleQuery(fetch)
    states = []
    query.subscribe(states.append)

    task = query.set_params("005930", "1D", 3)
    await asyncio.sleep(0)
    assert query.state.loading is True
    fetch.gates["005930"].set_result(None)
    await task

    assert query.state.loading is False
    assert query.state.params == ("005930", "1D", 3)
    assert len(query.bars) == 3
    assert isinstance(query.bars, tuple)
    assert [s.loading for s in states] == [True, False]


@pytest.mark.asyncio
async def test_stale_completion_is_dropped():
    fetch = GatedFetch(finish_when_cancelled=True)
    query = CandleQuery(fetch)

    first = query.set_params("A", "1D", 2)
    await asyncio.sleep(0)
    second = query.set_params("BB", "1D", 2)
    await asyncio.sleep(0)

    fetch.gates["BB"].set_result(None)
    await second
    # The superseded fetch ignores cancellation and still returns data.
    await first

    assert query.state.params == ("BB", "1D", 2)
    assert all(bar.close == 2.0 for bar in query.bars)
    assert query.generation == 2


@pytest.mark.asyncio
async def test_parameter_change_cancels_in_flight_request():
    fetch = GatedFetch()
    query = CandleQuery(fetch)

    first = query.set_params("A", "1D", 2)
    await asyncio.sleep(0)
    second = query.set_params("B", "1D", 2)
    await asyncio.sleep(0)

    assert first.cancelled() or first.done()
    fetch.gates["B"].set_result(None)
    await second
    assert query.state.params == ("B", "1D", 2)


@pytest.mark.asyncio
async def test_error_keeps_previous_data():
    fetch = GatedFetch()
    query = CandleQuery(fetch)

    task = query.set_params("OK", "1D", 4)
    await asyncio.sleep(0)
    fetch.gates["OK"].set_result(None)
    await task
    good = query.bars

    task = query.set_params("BAD", "1D", 4)
    await asyncio.sleep(0)
    fetch.gates["BAD"].set_result(None)
    await task

    assert query.state.error == "upstream said no"
    assert query.state.loading is False
    assert query.bars == good
    assert query.state.params == ("BAD", "1D", 4)


@pytest.mark.asyncio
async def test_close_cancels_and_ignores_late_results():
    fetch = GatedFetch()
    query = CandleQuery(fetch)

    task = query.set_params("A", "1D", 2)
    await asyncio.sleep(0)
    await query.close()

    assert task.cancelled()
    assert query.task is None
    assert query.state.loading is False
    assert query.state.data is None


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported():
    async def broken(*params):
        raise RuntimeError("boom")

    query = Query(broken, name="broken")
    await query.set_params(1)
    assert query.state.error == "boom"


@pytest.mark.asyncio
async def test_refresh_refetches_current_params():
    calls = []

    async def fetch(*params):
        calls.append(params)
        return len(calls)

    query = Query(fetch)
    await query.refresh()
    assert calls == []

    await query.set_params("x")
    await query.refresh()
    assert calls == [("x",), ("x",)]
    assert query.state.data == 2
