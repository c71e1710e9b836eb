from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from artdetective_agent.fetcher import BotBlocked, FetchError, FetchTimeout, HttpStatusError
from artdetective_agent.main import snapshot_error


def _login(client: TestClient, email: str = "collector@example.com") -> dict:
    res = client.post("/auth/login", json={"email": email})
    assert res.status_code == 201
    return res.json()


def _auth(tokens: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {tokens['tokens']['accessToken']}"}


def test_healthz(make_app) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=""))
    res = TestClient(app).get("/healthz")

    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert "ebay" in res.json()["sources"]


def test_snapshot_requires_bearer_token(make_app) -> None:
    app, rec = make_app(lambda r: httpx.Response(200, text=""))
    res = TestClient(app).post("/snapshot", json={"url": "https://stockx.com/x"})

    assert res.status_code == 401
    assert rec.requests == []


def test_snapshot_returns_camel_case_payload(make_app, listing_html: str) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=listing_html))
    client = TestClient(app)
    session = _login(client)

    res = client.post("/snapshot", json={"url": "https://www.ebay.com/itm/123"}, headers=_auth(session))

    assert res.status_code == 200
    body = res.json()
    assert body["source"] == "ebay"
    assert body["snapshot"]["score"] == 87
    assert body["snapshot"]["recommendedAction"] == "Proceed"
    assert len(body["snapshot"]["buckets"]) == 5
    assert body["artworkOverview"]["artistName"] == "Shepard Fairey"


@pytest.mark.parametrize(
    ("responder", "url", "status"),
    [
        (lambda r: httpx.Response(200, text="Please complete the captcha"), "https://stockx.com/x", 503),
        (lambda r: httpx.Response(404), "https://stockx.com/x", 404),
        (lambda r: httpx.Response(410), "https://stockx.com/x", 404),
        (lambda r: httpx.Response(500), "https://stockx.com/x", 502),
    ],
)
def test_snapshot_maps_fetch_failures(make_app, responder, url: str, status: int) -> None:
    app, _ = make_app(responder)
    client = TestClient(app)
    session = _login(client)

    res = client.post("/snapshot", json={"url": url}, headers=_auth(session))

    assert res.status_code == status
    assert res.json()["error"]
    assert res.json()["hint"]


def test_snapshot_timeout_maps_to_504(make_app) -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    app, rec = make_app(responder)
    client = TestClient(app)
    session = _login(client)

    res = client.post("/snapshot", json={"url": "https://www.artsy.net/artwork/1"}, headers=_auth(session))

    assert res.status_code == 504
    assert len(rec.requests) == 1


def test_snapshot_rejects_non_http_url(make_app) -> None:
    app, rec = make_app(lambda r: httpx.Response(200, text=""))
    client = TestClient(app)
    session = _login(client)

    res = client.post("/snapshot", json={"url": "ftp://example.com/x"}, headers=_auth(session))

    assert res.status_code == 400
    assert rec.requests == []


def test_snapshot_error_mapping_gives_ebay_specific_hint() -> None:
    status, _, hint = snapshot_error(BotBlocked(), "https://www.ebay.com/itm/1")
    assert status == 503
    assert "eBay" in hint

    assert snapshot_error(FetchTimeout("u"), None)[0] == 504
    assert snapshot_error(HttpStatusError(403), None)[0] == 502
    assert snapshot_error(FetchError("boom"), None)[0] == 502
    assert snapshot_error(RuntimeError("boom"), None)[0] == 500


def test_refresh_rotates_and_logout_revokes(make_app) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=""))
    client = TestClient(app)
    session = _login(client)
    old_refresh = session["tokens"]["refreshToken"]

    res = client.post("/auth/refresh", json={"refreshToken": old_refresh})
    assert res.status_code == 200
    new_refresh = res.json()["tokens"]["refreshToken"]
    assert new_refresh != old_refresh

    assert client.post("/auth/refresh", json={"refreshToken": old_refresh}).status_code == 401
    assert client.post("/auth/logout", json={"refreshToken": new_refresh}).json() == {"ok": True}
    assert client.post("/auth/refresh", json={"refreshToken": new_refresh}).status_code == 401


def test_me_returns_logged_in_user(make_app) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=""))
    client = TestClient(app)
    session = _login(client, "Someone@Example.com")

    res = client.get("/me", headers=_auth(session))

    assert res.status_code == 200
    assert res.json()["user"]["email"] == "someone@example.com"


def test_watchlist_add_delete_restore(make_app, listing_html: str) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=listing_html))
    client = TestClient(app)
    headers = _auth(_login(client))

    added = client.post("/watchlist", json={"url": "https://www.ebay.com/itm/123"}, headers=headers)
    assert added.status_code == 201
    listing_id = added.json()["listingId"]

    items = client.get("/watchlist", headers=headers).json()["items"]
    assert len(items) == 1
    assert items[0]["listingId"] == listing_id
    assert items[0]["thumbnailUrl"] == "https://img.example.com/obey-front.jpg"
    assert items[0]["price"] == 450.0

    deleted = client.delete(f"/watchlist/{listing_id}", headers=headers).json()
    assert deleted["state"] == "deleted"
    assert client.get("/watchlist", headers=headers).json()["items"] == []

    bad = client.post(f"/watchlist/{listing_id}/restore", json={"undoToken": "nope"}, headers=headers)
    assert bad.status_code == 403

    ok = client.post(f"/watchlist/{listing_id}/restore", json={"undoToken": deleted["undoToken"]}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["item"]["listingId"] == listing_id

    missing = client.post("/watchlist/lst_missing/restore", json={}, headers=headers)
    assert missing.status_code == 404

    gone = client.delete("/watchlist/lst_missing", headers=headers).json()
    assert gone["state"] == "not_found"


def test_rescan_reports_results_and_records_alert(make_app, listing_html: str) -> None:
    state = {"fail": False}

    def responder(request: httpx.Request) -> httpx.Response:
        if state["fail"]:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, text=listing_html)

    app, _ = make_app(responder)
    client = TestClient(app)
    headers = _auth(_login(client))
    client.post("/watchlist", json={"url": "https://stockx.com/obey"}, headers=headers)

    res = client.post("/rescan", headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["rescanned"] == 1
    assert body["results"][0]["updated"] is True
    assert body["results"][0]["score"] == 87
    assert body["results"][0]["missingFields"] == []

    state["fail"] = True
    failed = client.post("/rescan", headers=headers).json()
    assert failed["results"][0]["updated"] is False
    assert failed["results"][0]["error"] == "timeout"

    alerts = client.get("/alerts", headers=headers).json()["items"]
    assert [a["type"] for a in alerts] == ["rescan", "rescan"]
    assert alerts[0]["message"] == "Rescanned 0/1 watchlist listings."


def test_follow_and_unfollow(make_app) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=""))
    client = TestClient(app)
    headers = _auth(_login(client))

    assert client.post("/follow/shepard-fairey", headers=headers).status_code == 201
    client.post("/follow/kaws", headers=headers)
    assert client.get("/following", headers=headers).json() == {"artists": ["shepard-fairey", "kaws"]}

    client.delete("/follow/kaws", headers=headers)
    assert client.get("/following", headers=headers).json() == {"artists": ["shepard-fairey"]}


def test_junk_bearer_token_is_unauthorized(make_app) -> None:
    app, _ = make_app(lambda r: httpx.Response(200, text=""))

    res = TestClient(app).get("/me", headers={"Authorization": "Bearer abc.déf".encode("latin-1")})

    assert res.status_code == 401
