from __future__ import annotations

import re
import time
import uuid
from datetime import datetime, timezone
from urllib.parse import urlparse, urlunparse

import httpx
from loguru import logger

from .evidence import (
    evaluate_buckets,
    missing_signals,
    overall_score,
    positive_signals,
    recommended_action,
    status_for,
)
from .extractor import NOT_PROVIDED, UNKNOWN_ARTIST, extract_listing_facts
from .fetcher import FALLBACK_PROXY, FETCH_TIMEOUT_S, fetch_listing_html
from .models import ArtworkOverview, ListingRecord, ListingSource, Snapshot, SnapshotResponse
from .store import ListingStore


class InvalidUrl(ValueError):
    kind = "invalid_url"


def normalize_listing_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidUrl("A valid URL is required.")
    if not re.match(r"^https?://", value, re.IGNORECASE):
        raise InvalidUrl("URL must use http or https.")
    try:
        parsed = urlparse(value)
    except ValueError as exc:
        raise InvalidUrl("A valid URL is required.") from exc
    if not parsed.hostname:
        raise InvalidUrl("A valid URL is required.")
    return urlunparse(parsed._replace(scheme=parsed.scheme.lower()))


def detect_source(url: str) -> ListingSource:
    host = (urlparse(url).hostname or "").lower()
    for tag in ("ebay", "stockx", "artsy"):
        if tag in host:
            return tag
    return "listing"


def new_listing_id() -> str:
    return f"lst_{uuid.uuid4().hex[:12]}"


def build_snapshot(
    url: str,
    raw: str,
    *,
    listing_id: str,
    fetched_at: str,
) -> tuple[SnapshotResponse, ListingRecord]:
    """Score already-fetched listing text. No I/O."""
    facts = extract_listing_facts(raw)
    buckets = evaluate_buckets(raw, facts)
    score = overall_score(buckets)
    source = detect_source(url)

    record = ListingRecord(
        listing_id=listing_id,
        source=source,
        url=url,
        fetched_at=fetched_at,
        currency=facts.currency,
        price=facts.price,
        facts=facts,
    )
    response = SnapshotResponse(
        source=source,
        snapshot=Snapshot(
            listing_id=listing_id,
            score=score,
            status=status_for(score),
            recommended_action=recommended_action(score, buckets),
            top_positive_signals=positive_signals(buckets),
            top_missing_or_suspicious_signals=missing_signals(buckets),
            buckets=buckets,
        ),
        artwork_overview=ArtworkOverview(
            image_urls=facts.image_urls,
            artist_name=facts.artist,
            title=facts.title,
            dimensions=facts.dimensions,
            price=facts.price,
            currency=facts.currency,
            medium=NOT_PROVIDED,
            year_of_release=NOT_PROVIDED,
        ),
    )
    return response, record


def missing_overview_fields(overview: ArtworkOverview) -> list[str]:
    missing: list[str] = []
    if overview.artist_name == UNKNOWN_ARTIST:
        missing.append("artist")
    if overview.price is None:
        missing.append("price")
    if overview.dimensions == NOT_PROVIDED:
        missing.append("dimensions")
    if not overview.image_urls:
        missing.append("images")
    return missing


def build_snapshot_from_url(
    url: str,
    store: ListingStore,
    *,
    client: httpx.Client | None = None,
    timeout_s: float = FETCH_TIMEOUT_S,
    fallback_proxy: str = FALLBACK_PROXY,
) -> SnapshotResponse:
    t0 = time.perf_counter()
    raw = fetch_listing_html(url, client=client, timeout_s=timeout_s, fallback_proxy=fallback_proxy)
    response, record = build_snapshot(
        url,
        raw,
        listing_id=new_listing_id(),
        fetched_at=datetime.now(timezone.utc).isoformat(),
    )

    # Best-effort: a store failure does not cost the caller their snapshot.
    try:
        store.save_listing(record)
    except Exception:
        logger.opt(exception=True).warning("Could not persist listing {} for {}", record.listing_id, url)

    logger.info(
        "Snapshot {} built for {} ({}): score={} action={} in {}ms",
        record.listing_id,
        url,
        record.source,
        response.snapshot.score,
        response.snapshot.recommended_action,
        int((time.perf_counter() - t0) * 1000),
    )
    return response
