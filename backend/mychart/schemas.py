from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InstrumentResponse(BaseModel):
    code: str = Field(..., description="Ticker or domestic code")
    name: str = Field(..., description="Human readable name")
    market: Optional[str] = None


class Candle(BaseModel):
    time: int = Field(..., description="Unix timestamp in seconds")
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


class CandleResponse(BaseModel):
    symbol: str
    timeframe: str
    candles: List[Candle]


class QuoteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    price: float
    change: Optional[float] = None
    change_rate: Optional[float] = Field(default=None, alias="changeRate")
    name: Optional[str] = None


class IndicatorResponse(BaseModel):
    symbol: str
    timeframe: str
    indicators: Dict[str, Any]


class MAPatch(BaseModel):
    enabled: Optional[bool] = None
    periods: Optional[List[int]] = Field(default=None, min_length=1)


class RSIPatch(BaseModel):
    enabled: Optional[bool] = None
    period: Optional[int] = Field(default=None, gt=0)
    overbought: Optional[float] = Field(default=None, ge=0, le=100)
    oversold: Optional[float] = Field(default=None, ge=0, le=100)


class BollingerPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: Optional[bool] = None
    period: Optional[int] = Field(default=None, gt=0)
    std_dev: Optional[float] = Field(default=None, gt=0, alias="stdDev")


class IchimokuPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: Optional[bool] = None
    tenkan_period: Optional[int] = Field(default=None, gt=0, alias="tenkanPeriod")
    kijun_period: Optional[int] = Field(default=None, gt=0, alias="kijunPeriod")
    senkou_b_period: Optional[int] = Field(default=None, gt=0, alias="senkouBPeriod")
    displacement: Optional[int] = Field(default=None, gt=0)


class VolumePatch(BaseModel):
    enabled: Optional[bool] = None


INDICATOR_PATCHES = {
    "ma": MAPatch,
    "rsi": RSIPatch,
    "bollinger": BollingerPatch,
    "ichimoku": IchimokuPatch,
    "volume": VolumePatch,
}


class ToolPayload(BaseModel):
    tool: Optional[str] = Field(default=None, description="Drawing tool, or null to release")
    toggle: bool = False


class ClickPayload(BaseModel):
    symbol: str = Field(..., min_length=1)
    time: Optional[int] = None
    price: Optional[float] = None
    text: Optional[str] = Field(default=None, description="Answer to the text tool prompt")
    timeframe: Optional[str] = Field(default=None, description="Chart timeframe; sets the hit-test time tolerance")


class KeyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    in_text_input: bool = Field(default=False, alias="inTextInput")


class InteractionState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_tool: Optional[str] = Field(default=None, alias="activeTool")
    selected_id: Optional[str] = Field(default=None, alias="selectedId")
    temp_points: List[Dict[str, Any]] = Field(default_factory=list, alias="tempPoints")
    drawing: Optional[Dict[str, Any]] = None
