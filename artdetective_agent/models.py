from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CheckValue = Literal["Good", "Needs review", "Missing evidence"]
ConfidenceStatus = CheckValue
RecommendedAction = Literal["Proceed", "Ask seller for docs", "Wait/monitor"]
BucketKey = Literal["authenticity", "provenance", "price", "risk", "visual"]
ListingSource = Literal["ebay", "stockx", "artsy", "listing"]


class WireModel(BaseModel):
    # Python attributes stay snake_case; JSON goes out camelCase.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UrlPayload(WireModel):
    url: str = Field(..., min_length=1)


class EmailPayload(WireModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RefreshPayload(WireModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutPayload(WireModel):
    refresh_token: str | None = None


class UndoPayload(WireModel):
    undo_token: str | None = Field(None, min_length=1)


class ListingFacts(WireModel):
    title: str
    artist: str
    price: float | None = None
    currency: str = "USD"
    dimensions: str
    image_urls: list[str] = Field(default_factory=list)


class EvidenceCheck(WireModel):
    label: str
    value: CheckValue
    detail: str


class EvidenceBucket(WireModel):
    key: BucketKey
    label: str
    weight: int
    score: int = Field(..., ge=0, le=100)
    status: ConfidenceStatus
    checks: list[EvidenceCheck]
    explanation: str


class Snapshot(WireModel):
    listing_id: str
    score: int = Field(..., ge=0, le=100)
    status: ConfidenceStatus
    recommended_action: RecommendedAction
    top_positive_signals: list[str]
    top_missing_or_suspicious_signals: list[str]
    buckets: list[EvidenceBucket]


class ArtworkOverview(WireModel):
    image_urls: list[str]
    artist_name: str
    title: str
    dimensions: str
    price: float | None = None
    currency: str
    medium: str = "Not provided"
    year_of_release: str = "Not provided"


class SnapshotResponse(WireModel):
    source: ListingSource
    snapshot: Snapshot
    artwork_overview: ArtworkOverview


class ListingRecord(WireModel):
    listing_id: str
    source: ListingSource
    url: str
    fetched_at: str
    currency: str
    price: float | None = None
    facts: ListingFacts


class User(WireModel):
    id: str
    email: str


class TokenPair(WireModel):
    access_token: str
    refresh_token: str


class LoginResponse(WireModel):
    user: User
    tokens: TokenPair


class WatchlistItem(WireModel):
    listing_id: str
    source: str
    url: str
    title: str
    thumbnail_url: str | None = None
    price: float | None = None
    currency: str | None = None


class Alert(WireModel):
    id: str
    type: str
    message: str
    created_at: str


class RescanResult(WireModel):
    listing_id: str
    updated: bool
    score: int | None = None
    missing_fields: list[str] = Field(default_factory=list)
    error: str | None = None


class RescanResponse(WireModel):
    rescanned: int
    results: list[RescanResult]


class ErrorResponse(WireModel):
    error: str
    hint: str | None = None
