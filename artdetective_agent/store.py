"""
In-process store for listings, users, follows, watchlists and alerts.

One ``MemoryStore`` is built per app (or per test) and handed to whatever
needs it; nothing here is module-global.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Protocol
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .models import Alert, ListingRecord, User, WatchlistItem

UNDO_TTL_S = 10.0
MAX_ALERTS = 30

_TRACKING_PARAMS = {"gclid", "fbclid"}


class ListingStore(Protocol):
    def save_listing(self, record: ListingRecord) -> None: ...

    def get_listing(self, listing_id: str) -> ListingRecord | None: ...


@dataclass(frozen=True)
class DeletedRecord:
    item: WatchlistItem
    deleted_at: float
    undo_token: str
    undo_expires_at: float


@dataclass(frozen=True)
class DeleteResult:
    state: Literal["deleted", "already_deleted", "not_found"]
    item: WatchlistItem | None = None
    undo_token: str | None = None
    undo_expires_at: str | None = None


@dataclass(frozen=True)
class RestoreResult:
    state: Literal["restored", "not_found", "expired", "invalid_token"]
    item: WatchlistItem | None = None


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def normalize_url_key(url: str) -> str:
    """Key used to spot the same listing behind cosmetic URL differences."""
    value = (url or "").strip()
    if not value:
        return ""
    try:
        p = urlparse(value)
    except ValueError:
        return value.lower()
    if not p.scheme or not p.hostname:
        return value.lower()
    query = urlencode([
        (k, v)
        for k, v in parse_qsl(p.query, keep_blank_values=True)
        if not k.lower().startswith("utm_") and k.lower() not in _TRACKING_PARAMS
    ])
    path = p.path.rstrip("/") or "/"
    return urlunparse((p.scheme.lower(), p.hostname.lower(), path, "", query, ""))


def _dedupe_watchlist(items: list[WatchlistItem]) -> list[WatchlistItem]:
    seen_ids: set[str] = set()
    seen_urls: set[str] = set()
    out: list[WatchlistItem] = []
    for item in items:
        listing_id = item.listing_id.strip()
        url_key = normalize_url_key(item.url)
        if not listing_id or not url_key:
            continue
        if listing_id in seen_ids or url_key in seen_urls:
            continue
        seen_ids.add(listing_id)
        seen_urls.add(url_key)
        out.append(item)
    return out


class MemoryStore:
    def __init__(self, undo_ttl_s: float = UNDO_TTL_S, clock=time.time):
        self.undo_ttl_s = undo_ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._users_by_email: dict[str, User] = {}
        self._refresh: dict[str, str] = {}
        self._follows: dict[str, list[str]] = {}
        self._watchlist: dict[str, list[WatchlistItem]] = {}
        self._deleted: dict[str, dict[str, DeletedRecord]] = {}
        self._alerts: dict[str, list[Alert]] = {}
        self._listings: dict[str, ListingRecord] = {}

    # listings

    def save_listing(self, record: ListingRecord) -> None:
        with self._lock:
            self._listings[record.listing_id] = record

    def get_listing(self, listing_id: str) -> ListingRecord | None:
        with self._lock:
            return self._listings.get(listing_id)

    # users and refresh tokens

    def ensure_user(self, email: str) -> User:
        key = email.strip().lower()
        with self._lock:
            existing = self._users_by_email.get(key)
            if existing:
                return existing
            user = User(id=f"usr_{uuid.uuid4().hex[:12]}", email=key)
            self._users_by_email[key] = user
            return user

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            return next((u for u in self._users_by_email.values() if u.id == user_id), None)

    def store_refresh(self, refresh_token: str, user_id: str) -> None:
        with self._lock:
            self._refresh[refresh_token] = user_id

    def user_for_refresh(self, refresh_token: str) -> str | None:
        with self._lock:
            return self._refresh.get(refresh_token)

    def revoke_refresh(self, refresh_token: str) -> None:
        with self._lock:
            self._refresh.pop(refresh_token, None)

    # follows

    def follow_artist(self, user_id: str, artist: str) -> None:
        with self._lock:
            artists = self._follows.setdefault(user_id, [])
            if artist not in artists:
                artists.append(artist)

    def unfollow_artist(self, user_id: str, artist: str) -> None:
        with self._lock:
            artists = self._follows.get(user_id)
            if artists and artist in artists:
                artists.remove(artist)

    def list_following(self, user_id: str) -> list[str]:
        with self._lock:
            return list(self._follows.get(user_id, []))

    # watchlist

    def add_watchlist(self, user_id: str, item: WatchlistItem) -> None:
        incoming_key = normalize_url_key(item.url)
        with self._lock:
            current = _dedupe_watchlist(self._watchlist.get(user_id, []))
            self._watchlist[user_id] = _dedupe_watchlist([
                item,
                *(
                    e for e in current
                    if e.listing_id != item.listing_id and normalize_url_key(e.url) != incoming_key
                ),
            ])
            deleted = self._deleted.get(user_id, {})
            for key, record in list(deleted.items()):
                if record.item.listing_id == item.listing_id or normalize_url_key(record.item.url) == incoming_key:
                    del deleted[key]

    def list_watchlist(self, user_id: str) -> list[WatchlistItem]:
        with self._lock:
            items = _dedupe_watchlist(self._watchlist.get(user_id, []))
            self._watchlist[user_id] = items
            return list(items)

    def _prune_deleted(self, user_id: str) -> None:
        deleted = self._deleted.get(user_id)
        if not deleted:
            return
        now = self._clock()
        for listing_id, record in list(deleted.items()):
            if record.undo_expires_at <= now:
                del deleted[listing_id]

    def delete_watchlist_item(self, user_id: str, listing_id: str) -> DeleteResult:
        with self._lock:
            self._prune_deleted(user_id)
            items = self._watchlist.get(user_id, [])
            match = next((e for e in items if e.listing_id == listing_id), None)
            if match is not None:
                self._watchlist[user_id] = [e for e in items if e.listing_id != listing_id]
                now = self._clock()
                record = DeletedRecord(
                    item=match,
                    deleted_at=now,
                    undo_token=uuid.uuid4().hex,
                    undo_expires_at=now + self.undo_ttl_s,
                )
                self._deleted.setdefault(user_id, {})[listing_id] = record
                return DeleteResult("deleted", match, record.undo_token, _iso(record.undo_expires_at))

            existing = self._deleted.get(user_id, {}).get(listing_id)
            if existing is None:
                return DeleteResult("not_found")
            return DeleteResult("already_deleted", existing.item, existing.undo_token, _iso(existing.undo_expires_at))

    def restore_watchlist_item(self, user_id: str, listing_id: str, undo_token: str | None = None) -> RestoreResult:
        with self._lock:
            deleted = self._deleted.get(user_id, {})
            existing = deleted.get(listing_id)
            if existing is None:
                return RestoreResult("not_found")
            if existing.undo_expires_at <= self._clock():
                del deleted[listing_id]
                return RestoreResult("expired")
            if undo_token and existing.undo_token != undo_token:
                return RestoreResult("invalid_token")
            del deleted[listing_id]
        self.add_watchlist(user_id, existing.item)
        return RestoreResult("restored", existing.item)

    # alerts

    def add_alert(self, user_id: str, type: str, message: str) -> Alert:
        alert = Alert(
            id=f"alt_{uuid.uuid4().hex[:10]}",
            type=type,
            message=message,
            created_at=_iso(self._clock()),
        )
        with self._lock:
            self._alerts[user_id] = [alert, *self._alerts.get(user_id, [])][:MAX_ALERTS]
        return alert

    def list_alerts(self, user_id: str) -> list[Alert]:
        with self._lock:
            return list(self._alerts.get(user_id, []))
