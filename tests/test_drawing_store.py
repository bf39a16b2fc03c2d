import pytest

from conftest import base_fields
from mychart.config import DRAWINGS_KEY
from mychart.drawing_store import DrawingStore
from mychart.models import (
    DrawingStyle,
    FibRetracement,
    HorizontalLine,
    LineStyle,
    Point,
    TrendLine,
)


def hline(drawing_id="d1", price=100.0):
    return HorizontalLine(price=price, **base_fields(drawing_id))


def test_add_replaces_collections_and_notifies(store):
    seen = []
    store.subscribe(lambda symbol, drawings: seen.append((symbol, drawings)))
    before_map = store.drawings
    before = store.get_drawings("005930")

    store.add("005930", hline())

    assert store.drawings is not before_map
    assert store.get_drawings("005930") is not before
    assert [d.id for d in store.get_drawings("005930")] == ["d1"]
    assert seen == [("005930", store.get_drawings("005930"))]


def test_symbols_are_independent(store):
    store.add("005930", hline("a"))
    store.add("000660", hline("b"))
    assert [d.id for d in store.get_drawings("005930")] == ["a"]
    assert [d.id for d in store.get_drawings("000660")] == ["b"]
    assert store.get_drawings("AAPL") == ()


def test_update_merges_and_stamps(store, clock):
    store.add("005930", hline())
    updated = store.update("005930", "d1", {"price": 120.0, "style": {"lineStyle": "dashed"}})

    assert updated.price == 120.0
    assert updated.style.line_style is LineStyle.DASHED
    assert updated.style.color == DrawingStyle().color
    assert updated.created_at == 1
    assert updated.updated_at == clock.now
    assert store.find("005930", "d1") is updated


def test_update_points_from_dicts(store):
    line = TrendLine(start_point=Point(0, 1), end_point=Point(10, 2), **base_fields())
    store.add("005930", line)
    updated = store.update("005930", "d1", {"endPoint": {"time": 20, "price": 3}, "extendRight": True})
    assert updated.end_point == Point(20, 3.0)
    assert updated.extend_right is True


@pytest.mark.parametrize("changes", [{"id": "other"}, {"createdAt": 5}, {"bogus": 1}])
def test_update_rejects_protected_or_unknown_fields(store, changes):
    store.add("005930", hline())
    with pytest.raises(ValueError):
        store.update("005930", "d1", changes)


def test_unknown_id_is_a_no_op(store):
    store.add("005930", hline())
    calls = []
    store.subscribe(lambda *args: calls.append(args))
    snapshot = store.drawings
    collection = store.get_drawings("005930")

    assert store.update("005930", "missing", {"price": 1.0}) is None
    assert store.delete("005930", "missing") is False

    assert store.drawings is snapshot
    assert store.get_drawings("005930") is collection
    assert calls == []


def test_delete_removes_only_that_drawing(store):
    store.add("005930", hline("a"))
    store.add("005930", hline("b"))

    assert store.delete("005930", "a") is True
    assert [d.id for d in store.get_drawings("005930")] == ["b"]


def test_delete_on_other_symbol_is_a_no_op(store):
    store.add("005930", hline("a"))
    collection = store.get_drawings("005930")
    assert store.delete("000660", "a") is False
    assert store.get_drawings("005930") is collection


def test_clear_symbol(store):
    store.add("005930", hline("a"))
    store.add("005930", hline("b"))
    store.add("000660", hline("c"))

    assert store.clear("005930") == 2
    assert store.get_drawings("005930") == ()
    assert [d.id for d in store.get_drawings("000660")] == ["c"]
    assert store.clear("005930") == 0



def test_snapshot_round_trip(storage):
    first = DrawingStore(storage)
    fib = FibRetracement(
        start_point=Point(0, 100), end_point=Point(10, 200), levels=(0.0, 0.5, 1.0), **base_fields("fib")
    )
    first.add("005930", fib)
    first.add("AAPL", hline("h"))
    first.set_default_style({"color": "#FF0000", "lineWidth": 3})

    second = DrawingStore(storage)
    assert second.get_drawings("005930") == (fib,)
    assert second.get_drawings("AAPL") == (hline("h"),)
    assert second.default_style.color == "#FF0000"
    assert second.default_style.line_width == 3
    assert storage.get(DRAWINGS_KEY)["drawings"]["005930"][0]["type"] == "fib-retracement"


def test_malformed_snapshot_is_ignored(storage):
    storage.set(DRAWINGS_KEY, {"drawings": {"005930": [{"type": "spiral"}]}})
    store = DrawingStore(storage)
    assert store.drawings == {}


@pytest.mark.parametrize("snapshot", [["not", "a", "mapping"], {"drawings": {"005930": "x"}}, {"drawings": "x"}])
def test_wrongly_shaped_snapshot_is_ignored(storage, snapshot):
    storage.set(DRAWINGS_KEY, snapshot)
    store = DrawingStore(storage)
    assert store.drawings == {}
    assert store.default_style == DrawingStyle()


def test_invalid_default_style_rejected(store):
    with pytest.raises(ValueError):
        store.set_default_style({"lineWidth": 0})
    with pytest.raises(ValueError):
        store.set_default_style({"fillOpacity": 1.5})
