"""Indicator configuration store: enabled flags and parameters per family."""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import INDICATORS_KEY
from .kv_storage import KeyValueStore

logger = logging.getLogger(__name__)

FAMILIES = ("ma", "rsi", "bollinger", "ichimoku", "volume")

DEFAULT_INDICATORS: Dict[str, Dict[str, Any]] = {
    "ma": {"enabled": True, "periods": [5, 20, 60, 120]},
    "rsi": {"enabled": True, "period": 14, "overbought": 70.0, "oversold": 30.0},
    "bollinger": {"enabled": True, "period": 20, "stdDev": 2.0},
    "ichimoku": {
        "enabled": False,
        "tenkanPeriod": 9,
        "kijunPeriod": 26,
        "senkouBPeriod": 52,
        "displacement": 26,
    },
    "volume": {"enabled": True},
}

Listener = Callable[[Dict[str, Dict[str, Any]]], None]


def _distinct_periods(periods: Any) -> List[int]:
    seen: List[int] = []
    for period in periods:
        value = int(period)
        if value <= 0:
            raise ValueError(f"MA period must be positive: {period}")
        if value not in seen:
            seen.append(value)
    return seen


class IndicatorConfigStore:
    """Holds the five indicator families and persists them as a whole."""

    def __init__(self, storage: Optional[KeyValueStore] = None, key: str = INDICATORS_KEY) -> None:
        self._storage = storage
        self._key = key
        self._state: Dict[str, Dict[str, Any]] = copy.deepcopy(DEFAULT_INDICATORS)
        self._listeners: List[Listener] = []
        self._load()

    def _load(self) -> None:
        if self._storage is None:
            return
        snapshot = self._storage.get(self._key)
        if snapshot is None:
            return
        try:
            for family in FAMILIES:
                if family in snapshot:
                    self._state[family] = self._merged(family, snapshot[family])
        except (AttributeError, TypeError, ValueError):
            logger.warning("Ignoring malformed indicator settings under %s", self._key)
            self._state = copy.deepcopy(DEFAULT_INDICATORS)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._state)

    def get(self, family: str) -> Dict[str, Any]:
        self._check_family(family)
        return copy.deepcopy(self._state[family])

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, family: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` into one family."""
        self._check_family(family)
        merged = self._merged(family, changes)
        self._replace(family, merged)
        return copy.deepcopy(merged)

    def set_ma(self, **changes: Any) -> Dict[str, Any]:
        return self.set("ma", changes)

    def set_rsi(self, **changes: Any) -> Dict[str, Any]:
        return self.set("rsi", changes)

    def set_bollinger(self, **changes: Any) -> Dict[str, Any]:
        return self.set("bollinger", changes)

    def set_ichimoku(self, **changes: Any) -> Dict[str, Any]:
        return self.set("ichimoku", changes)

    def set_volume(self, **changes: Any) -> Dict[str, Any]:
        return self.set("volume", changes)

    def toggle(self, family: str) -> bool:
        self._check_family(family)
        merged = dict(self._state[family])
        merged["enabled"] = not merged["enabled"]
        self._replace(family, merged)
        return merged["enabled"]

    def _merged(self, family: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        merged = dict(self._state[family])
        for key, value in changes.items():
            if key not in merged:
                raise ValueError(f"Unknown {family} setting: {key}")
            if key == "periods":
                value = _distinct_periods(value)
            elif key == "enabled":
                value = bool(value)
            merged[key] = value
        return merged

    def _replace(self, family: str, values: Dict[str, Any]) -> None:
        state = dict(self._state)
        state[family] = values
        self._state = state
        if self._storage is not None:
            self._storage.set(self._key, self._state)
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    @staticmethod
    def _check_family(family: str) -> None:
        if family not in FAMILIES:
            raise ValueError(f"Unknown indicator family: {family}")
