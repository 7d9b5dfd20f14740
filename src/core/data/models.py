"""Canonical shapes every adapter must produce, whatever the upstream vendor."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import msgpack
import polars as pl
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from src.core.errors import MalformedCache
from src.core.markets.registry import AssetType

OHLCV_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def to_epoch_seconds(ts: int | float) -> int:
    """Vendors disagree on units; anything past year 5138 in seconds is ms."""
    value = int(ts)
    return value // 1000 if value > 100_000_000_000 else value


class _Canonical(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Quote(_Canonical):
    symbol: str
    asset_type: AssetType
    price: float
    change_abs: float
    change_pct: float
    timestamp: int
    source: str
    is_stale: bool = False

    def normalized(self) -> Quote:
        seconds = to_epoch_seconds(self.timestamp)
        if seconds == self.timestamp:
            return self
        return self.model_copy(update={"timestamp": seconds})


class CandleSeries(_Canonical):
    """Parallel, time-ascending OHLCV arrays plus a status tag."""

    status: Literal["ok", "error"] = "ok"
    time: list[int] = []
    open: list[float] = []
    high: list[float] = []
    low: list[float] = []
    close: list[float] = []
    volume: list[float] = []
    source: str

    @model_validator(mode="after")
    def _equal_lengths(self) -> CandleSeries:
        lengths = {len(getattr(self, col)) for col in OHLCV_COLUMNS}
        if len(lengths) > 1:
            raise ValueError(f"OHLCV arrays differ in length: {sorted(lengths)}")
        return self

    @classmethod
    def error(cls, source: str) -> CandleSeries:
        return cls(status="error", source=source)

    @classmethod
    def from_frame(cls, df: pl.DataFrame, source: str) -> CandleSeries:
        df = df.sort("time")
        return cls(
            status="ok",
            time=[int(t) for t in df["time"].to_list()],
            open=df["open"].cast(pl.Float64).to_list(),
            high=df["high"].cast(pl.Float64).to_list(),
            low=df["low"].cast(pl.Float64).to_list(),
            close=df["close"].cast(pl.Float64).to_list(),
            volume=df["volume"].cast(pl.Float64).to_list(),
            source=source,
        )

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame({col: getattr(self, col) for col in OHLCV_COLUMNS})

    @property
    def last_index(self) -> int | None:
        return len(self.time) - 1 if self.time else None

    @property
    def is_ok(self) -> bool:
        return self.status == "ok" and len(self.close) > 0

    def __len__(self) -> int:
        return len(self.time)


@dataclass
class CacheEntry:
    key: str
    payload: bytes
    expires_at: float
    source: str
    now: float = field(default_factory=time.time, repr=False)

    @property
    def is_stale(self) -> bool:
        return self.now > self.expires_at

    @property
    def expires_at_dt(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def decode(self, model: type[BaseModel] | None = None) -> Any:
        """Unpack the stored payload; callers treat MalformedCache as a miss."""
        try:
            value = msgpack.unpackb(self.payload, raw=False)
        except (msgpack.UnpackException, ValueError, TypeError) as e:
            raise MalformedCache(self.key, str(e)) from e
        if model is None:
            return value
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise MalformedCache(self.key, str(e)) from e
