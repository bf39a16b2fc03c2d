"""Per-symbol drawing collections and the default drawing style.

Every mutation builds a new mapping and a new tuple for the touched symbol,
so observers can detect changes by identity. Operations on unknown ids are
no-ops and leave the collections untouched.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import DRAWINGS_KEY
from .kv_storage import KeyValueStore
from .models import Drawing, DrawingStyle, drawing_from_dict, now_millis

logger = logging.getLogger(__name__)

# Called with the symbol whose drawings changed and its new collection.
Listener = Callable[[str, Tuple[Drawing, ...]], None]


class DrawingStore:
    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        key: str = DRAWINGS_KEY,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._storage = storage
        self._key = key
        self._clock = clock
        self._drawings: Dict[str, Tuple[Drawing, ...]] = {}
        self._default_style = DrawingStyle()
        self._listeners: List[Listener] = []

        self._load()

    # ------------------------------------------------------------------ state

    @property
    def drawings(self) -> Dict[str, Tuple[Drawing, ...]]:
        return self._drawings

    @property
    def default_style(self) -> DrawingStyle:
        return self._default_style

    def get_drawings(self, symbol: str) -> Tuple[Drawing, ...]:
        return self._drawings.get(symbol, ())

    def find(self, symbol: str, drawing_id: str) -> Optional[Drawing]:
        for drawing in self.get_drawings(symbol):
            if drawing.id == drawing_id:
                return drawing
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------- CRUD

    def add(self, symbol: str, drawing: Drawing) -> Drawing:
        self._set_collection(symbol, self.get_drawings(symbol) + (drawing,))
        logger.info("Added %s %s for %s", drawing.tool.value, drawing.id, symbol)
        return drawing

    def update(self, symbol: str, drawing_id: str, changes: Mapping[str, Any]) -> Optional[Drawing]:
        """Merge ``changes`` into a drawing; returns ``None`` if the id is unknown."""
        current = self.get_drawings(symbol)
        updated: Optional[Drawing] = None
        collection = []
        for drawing in current:
            if drawing.id == drawing_id:
                updated = drawing.with_changes(changes, updated_at=self._clock())
                collection.append(updated)
            else:
                collection.append(drawing)
        if updated is None:
            return None
        self._set_collection(symbol, tuple(collection))
        return updated

    def delete(self, symbol: str, drawing_id: str) -> bool:
        current = self.get_drawings(symbol)
        remaining = tuple(d for d in current if d.id != drawing_id)
        if len(remaining) == len(current):
            return False
        self._set_collection(symbol, remaining)
        logger.info("Deleted drawing %s for %s", drawing_id, symbol)
        return True

    def clear(self, symbol: str) -> int:
        count = len(self.get_drawings(symbol))
        if count == 0:
            return 0
        self._set_collection(symbol, ())
        logger.info("Cleared %d drawings for %s", count, symbol)
        return count

    # ------------------------------------------------------------------ style

    def set_default_style(self, changes: Mapping[str, Any]) -> DrawingStyle:
        self._default_style = self._default_style.merge(changes)
        self._persist()
        return self._default_style

    # ------------------------------------------------------------ persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drawings": {
                symbol: [drawing.to_dict() for drawing in collection]
                for symbol, collection in self._drawings.items()
            },
            "defaultStyle": self._default_style.to_dict(),
        }

    def load_dict(self, data: Mapping[str, Any]) -> None:
        drawings = {
            symbol: tuple(drawing_from_dict(item) for item in items)
            for symbol, items in (data.get("drawings") or {}).items()
        }
        style = data.get("defaultStyle")
        self._default_style = DrawingStyle.from_dict(style) if style else DrawingStyle()
        self._drawings = drawings

    def _load(self) -> None:
        if self._storage is None:
            return
        snapshot = self._storage.get(self._key)
        if snapshot is None:
            return
        try:
            self.load_dict(snapshot)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed drawings snapshot under %s", self._key)

    def _persist(self) -> None:
        if self._storage is not None:
            self._storage.set(self._key, self.to_dict())

    def _set_collection(self, symbol: str, collection: Tuple[Drawing, ...]) -> None:
        drawings = dict(self._drawings)
        drawings[symbol] = collection
        self._drawings = drawings
        self._persist()
        for listener in list(self._listeners):
            listener(symbol, collection)
