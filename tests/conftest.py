import itertools
from typing import List, Optional, Sequence

import pytest

from mychart.drawing_controller import DrawingController
from mychart.drawing_store import DrawingStore
from mychart.kv_storage import MemoryKeyValueStore
from mychart.models import Bar, DrawingStyle


def make_bars(closes: Sequence[float], start: int = 1_000, step: int = 60, volumes: Optional[Sequence] = None) -> List[Bar]:
    """Bars whose high/low sit one unit around the close."""
    bars = []
    for i, close in enumerate(closes):
        volume = volumes[i] if volumes is not None else 100.0
        bars.append(Bar(time=start + i * step, open=close, high=close + 1, low=close - 1, close=close, volume=volume))
    return bars


def base_fields(drawing_id: str = "d1", **overrides):
    fields = dict(
        id=drawing_id,
        style=DrawingStyle(),
        visible=True,
        locked=False,
        created_at=1,
        updated_at=1,
    )
    fields.update(overrides)
    return fields


class FakeClock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def storage():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(storage, clock):
    return DrawingStore(storage, clock=clock)


@pytest.fixture
def controller(store, clock):
    ids = (f"drawing-{n}" for n in itertools.count(1))
    return DrawingController(store, symbol="005930", clock=clock, id_factory=lambda: next(ids))
