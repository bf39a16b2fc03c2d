import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple


TIMEFRAMES: List[str] = ["1m", "5m", "15m", "1h", "1D", "1W", "1M"]

TIMEFRAME_SECONDS: Dict[str, int] = {
    "1m": 60,
    "5m": 5 * 60,
    "15m": 15 * 60,
    "1h": 60 * 60,
    "1D": 24 * 60 * 60,
    "1W": 7 * 24 * 60 * 60,
    "1M": 30 * 24 * 60 * 60,
}

# Interval names understood by the upstream chart endpoint.
UPSTREAM_INTERVALS: Dict[str, str] = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "1h": "1h",
    "1D": "1d",
    "1W": "1wk",
    "1M": "1mo",
}

# Intraday requests still need the latest bars when the market is closed.
MIN_LOOKBACK_DAYS: Dict[str, int] = {"1m": 7, "5m": 14, "15m": 30, "1h": 90}
MAX_LOOKBACK_DAYS: Dict[str, int] = {"1m": 30, "5m": 180, "15m": 365, "1h": 730}

DEFAULT_TIMEFRAME = "1D"
DEFAULT_COUNT = 240
MAX_COUNT = 5000

DRAWINGS_KEY = "mychart-drawings"
INDICATORS_KEY = "mychart-indicators"

DEFAULT_FIB_LEVELS: Tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 1.0)
DEFAULT_FONT_SIZE = 14
HIT_THRESHOLD = 0.02
# One year in seconds; rays and extended trend lines are projected this far.
EXTENSION_HORIZON = 31_536_000

FIB_LEVEL_COLORS: Dict[float, str] = {
    0.0: "#787B86",
    0.236: "#F7525F",
    0.382: "#FF9800",
    0.5: "#4CAF50",
    0.618: "#2196F3",
    1.0: "#787B86",
}


def validate_timeframe(timeframe: str) -> str:
    if timeframe not in TIMEFRAME_SECONDS:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return timeframe


def timeframe_seconds(timeframe: str) -> int:
    return TIMEFRAME_SECONDS[validate_timeframe(timeframe)]


BACKEND_DIR = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    database_url: Optional[str]
    data_source: str
    http_timeout: float


def load_settings() -> Settings:
    data_dir = Path(os.getenv("MYCHART_DATA_DIR", str(BACKEND_DIR / "data")))
    data_dir.mkdir(parents=True, exist_ok=True)
    db_path = Path(os.getenv("MYCHART_DB_PATH", str(data_dir / "mychart.db")))

    data_source = os.getenv("MYCHART_DATA_SOURCE", "yahoo").lower()
    if data_source not in {"yahoo", "mock"}:
        raise ValueError(f"Unsupported data source: {data_source}")

    return Settings(
        data_dir=data_dir,
        db_path=db_path,
        database_url=os.getenv("DATABASE_URL") or None,
        data_source=data_source,
        http_timeout=float(os.getenv("MYCHART_HTTP_TIMEOUT", "10")),
    )
