from __future__ import annotations

from datetime import datetime, timezone

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .analyzer import InvalidUrl, build_snapshot_from_url, missing_overview_fields, normalize_listing_url
from .auth import InvalidToken, TokenClaims, issue_access_token, issue_refresh_token, verify_access_token
from .config import Settings, get_settings
from .fetcher import BotBlocked, FetchError, FetchTimeout, HttpStatusError, is_ebay_url
from .models import (
    EmailPayload,
    ErrorResponse,
    LoginResponse,
    LogoutPayload,
    RefreshPayload,
    RescanResponse,
    RescanResult,
    SnapshotResponse,
    TokenPair,
    UndoPayload,
    UrlPayload,
    WatchlistItem,
)
from .store import MemoryStore

SUPPORTED_SOURCES = ["ebay", "stockx", "artsy", "independent_gallery"]


def snapshot_error(exc: Exception, url: str | None) -> tuple[int, str, str]:
    """Map a snapshot failure to (status, error, hint) for the client."""
    if isinstance(exc, InvalidUrl):
        return 400, str(exc), "Paste the full http(s) link to a public listing."

    if isinstance(exc, BotBlocked):
        if url and is_ebay_url(url):
            hint = (
                "eBay sometimes rate-limits automated fetches. Open the listing in a browser, wait 30-60 "
                "seconds, and retry. If it still fails, try another listing URL."
            )
        else:
            hint = "The source marketplace appears to be blocking automated access. Retry shortly or try another listing URL."
        return 503, "Snapshot access is temporarily blocked by the listing site.", hint

    if isinstance(exc, HttpStatusError) and exc.status_code in (404, 410):
        return (
            404,
            "That listing is unavailable or no longer public.",
            "Check that the URL is correct and publicly accessible, then try again.",
        )

    if isinstance(exc, FetchTimeout):
        return (
            504,
            "The snapshot request timed out while fetching the listing.",
            "Please retry in a few seconds. If this keeps happening, use a different listing URL to confirm source availability.",
        )

    if isinstance(exc, FetchError):
        return (
            502,
            "Unable to retrieve listing content right now.",
            "The marketplace may be temporarily unavailable or blocking requests. Retry shortly.",
        )

    return (
        500,
        "Snapshot could not be generated from this listing.",
        "Please verify the URL and try again. If the issue persists, test with a different listing source.",
    )


def _error_response(exc: Exception, url: str | None) -> JSONResponse:
    status, error, hint = snapshot_error(exc, url)
    if status >= 500:
        logger.warning("Snapshot failed for {} -> {}: {!r}", url, status, exc)
    return JSONResponse(status_code=status, content=ErrorResponse(error=error, hint=hint).model_dump(by_alias=True))


def create_app(
    settings: Settings | None = None,
    store: MemoryStore | None = None,
    http_client: httpx.Client | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or MemoryStore(undo_ttl_s=settings.undo_ttl_s)

    app = FastAPI(title="Art Detective Agent", version="0.1.0")
    app.state.settings = settings
    app.state.store = store
    app.state.http_client = http_client

    # For local dev, this defaults to allowing http://localhost:3000.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current_user(authorization: str | None = Header(default=None)) -> TokenClaims:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(status_code=401, detail="Missing bearer token.")
        try:
            return verify_access_token(authorization[7:], secret=settings.auth_secret)
        except InvalidToken as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

    def snapshot_for(url: str) -> SnapshotResponse:
        return build_snapshot_from_url(
            url,
            store,
            client=app.state.http_client,
            timeout_s=settings.fetch_timeout_s,
            fallback_proxy=settings.fallback_proxy,
        )

    def issue_tokens(user_id: str, email: str) -> TokenPair:
        refresh = issue_refresh_token()
        store.store_refresh(refresh, user_id)
        return TokenPair(
            access_token=issue_access_token(user_id, email, secret=settings.auth_secret, ttl_s=settings.access_ttl_s),
            refresh_token=refresh,
        )

    @app.get("/healthz")
    def healthz():
        return {"ok": True, "at": datetime.now(timezone.utc).isoformat(), "sources": SUPPORTED_SOURCES}

    @app.post("/auth/login", response_model=LoginResponse, status_code=201)
    def login(payload: EmailPayload):
        user = store.ensure_user(payload.email)
        return LoginResponse(user=user, tokens=issue_tokens(user.id, user.email))

    @app.post("/auth/refresh")
    def refresh(payload: RefreshPayload):
        user_id = store.user_for_refresh(payload.refresh_token)
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid refresh token.")
        user = store.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=401, detail="User not found.")
        store.revoke_refresh(payload.refresh_token)
        return {"tokens": issue_tokens(user.id, user.email)}

    @app.post("/auth/logout")
    def logout(payload: LogoutPayload | None = None):
        if payload and payload.refresh_token:
            store.revoke_refresh(payload.refresh_token)
        return {"ok": True}

    @app.get("/me")
    def me(claims: TokenClaims = Depends(current_user)):
        user = store.get_user(claims.user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found.")
        return {"user": user}

    @app.post("/snapshot", response_model=SnapshotResponse, responses={400: {"model": ErrorResponse}})
    def snapshot(payload: UrlPayload, claims: TokenClaims = Depends(current_user)):
        try:
            url = normalize_listing_url(payload.url)
            return snapshot_for(url)
        except Exception as exc:
            return _error_response(exc, payload.url)

    @app.get("/watchlist")
    def list_watchlist(claims: TokenClaims = Depends(current_user)):
        return {"items": store.list_watchlist(claims.user_id)}

    @app.post("/watchlist", status_code=201)
    def add_watchlist(payload: UrlPayload, claims: TokenClaims = Depends(current_user)):
        try:
            url = normalize_listing_url(payload.url)
            snap = snapshot_for(url)
        except Exception as exc:
            return _error_response(exc, payload.url)
        overview = snap.artwork_overview
        store.add_watchlist(
            claims.user_id,
            WatchlistItem(
                listing_id=snap.snapshot.listing_id,
                source=snap.source,
                url=url,
                title=overview.title or "Untitled listing",
                thumbnail_url=overview.image_urls[0] if overview.image_urls else None,
                price=overview.price,
                currency=overview.currency,
            ),
        )
        return {"ok": True, "listingId": snap.snapshot.listing_id}

    @app.delete("/watchlist/{listing_id}")
    def delete_watchlist(listing_id: str, claims: TokenClaims = Depends(current_user)):
        result = store.delete_watchlist_item(claims.user_id, listing_id)
        if result.state == "not_found":
            return {"ok": True, "state": "not_found", "message": "Listing is already removed."}
        return {
            "ok": True,
            "state": result.state,
            "listingId": listing_id,
            "undoToken": result.undo_token,
            "undoExpiresAt": result.undo_expires_at,
        }

    @app.post("/watchlist/{listing_id}/restore")
    def restore_watchlist(listing_id: str, payload: UndoPayload | None = None, claims: TokenClaims = Depends(current_user)):
        result = store.restore_watchlist_item(claims.user_id, listing_id, payload.undo_token if payload else None)
        if result.state == "restored":
            return {"ok": True, "state": "restored", "item": result.item}
        if result.state == "invalid_token":
            raise HTTPException(status_code=403, detail="Undo token is invalid for this listing.")
        if result.state == "expired":
            raise HTTPException(status_code=410, detail="Undo window expired for this listing.")
        raise HTTPException(status_code=404, detail="Listing cannot be restored.")

    @app.post("/rescan", response_model=RescanResponse)
    def rescan(claims: TokenClaims = Depends(current_user)):
        items = store.list_watchlist(claims.user_id)
        results: list[RescanResult] = []
        for item in items:
            try:
                snap = snapshot_for(item.url)
            except FetchError as exc:
                results.append(RescanResult(listing_id=item.listing_id, updated=False, error=exc.kind))
                continue
            results.append(
                RescanResult(
                    listing_id=item.listing_id,
                    updated=True,
                    score=snap.snapshot.score,
                    missing_fields=missing_overview_fields(snap.artwork_overview),
                )
            )
        if items:
            updated = sum(1 for r in results if r.updated)
            store.add_alert(claims.user_id, "rescan", f"Rescanned {updated}/{len(items)} watchlist listings.")
        return RescanResponse(rescanned=len(items), results=results)

    @app.get("/following")
    def following(claims: TokenClaims = Depends(current_user)):
        return {"artists": store.list_following(claims.user_id)}

    @app.post("/follow/{artist_id}", status_code=201)
    def follow(artist_id: str, claims: TokenClaims = Depends(current_user)):
        store.follow_artist(claims.user_id, artist_id)
        return {"ok": True, "artistId": artist_id}

    @app.delete("/follow/{artist_id}")
    def unfollow(artist_id: str, claims: TokenClaims = Depends(current_user)):
        store.unfollow_artist(claims.user_id, artist_id)
        return {"ok": True, "artistId": artist_id}

    @app.get("/alerts")
    def alerts(claims: TokenClaims = Depends(current_user)):
        return {"items": store.list_alerts(claims.user_id)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "artdetective_agent.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
