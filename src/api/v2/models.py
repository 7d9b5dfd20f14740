"""Pydantic response models for the v2 API.

Quote and CandleSeries are served as-is from src.core.data.models.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


# ── Health ───────────────────────────────────────────────────────────────


class Health(BaseModel):
    status: str = "ok"
    version: str
    feed_state: str
    tracked_symbols: list[str] = Field(default_factory=list)


# ── Optional data ────────────────────────────────────────────────────────


class ProfileResponse(BaseModel):
    symbol: str
    profile: dict | None = None


class MetricsResponse(BaseModel):
    symbol: str
    metrics: dict | None = None


class NewsResponse(BaseModel):
    symbol: str
    articles: list[dict] = Field(default_factory=list)


# ── History ──────────────────────────────────────────────────────────────


class CandleCount(BaseModel):
    symbol: str
    count: int


# ── Jobs ─────────────────────────────────────────────────────────────────


class JobAccepted(BaseModel):
    job_id: str
    status: str = "RUNNING"
    message: str = ""


class JobStateOut(BaseModel):
    id: str
    status: str
    started_at: str | None = None
    finished_at: str | None = None
    error: str | None = None


# ── Registry ─────────────────────────────────────────────────────────────


class Universe(BaseModel):
    name: str
    asset_type: str
    size: int


class Asset(BaseModel):
    asset_type: str
    name: str
    has_fundamentals: bool
    providers: dict[str, list[str]]
