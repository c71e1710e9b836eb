"""
Listing fetcher.

Pulls raw listing HTML with a browser-like user agent, rejects bot-check
interstitials and, for eBay hosts only, retries once through a read-through
proxy when the direct request fails for any reason.
"""
from __future__ import annotations

import re
from urllib.parse import urlparse

import httpx
from loguru import logger

FETCH_TIMEOUT_S = 15.0
FALLBACK_PROXY = "https://r.jina.ai/"

DIRECT_HEADERS = {
    "user-agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    ),
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "no-cache",
}
FALLBACK_HEADERS = {"user-agent": "ArtDetectiveWeb/1.0"}

_BOT_BLOCK_RE = re.compile(
    r"\b(robot check|access denied|to continue, please verify|security measure|captcha)\b",
    re.IGNORECASE,
)
_EBAY_HOST_RE = re.compile(r"(?:^|\.)ebay\.", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class FetchError(Exception):
    kind = "fetch_failed"


class FetchTimeout(FetchError):
    kind = "timeout"

    def __init__(self, url: str):
        super().__init__(f"Timed out fetching listing: {url}")
        self.url = url


class HttpStatusError(FetchError):
    kind = "http_status"

    def __init__(self, status_code: int):
        super().__init__(f"Could not fetch listing ({status_code})")
        self.status_code = status_code


class BotBlocked(FetchError):
    kind = "bot_blocked"

    def __init__(self):
        super().__init__("Listing page appears bot-protected.")


def is_likely_bot_block(content: str) -> bool:
    return bool(_BOT_BLOCK_RE.search(content or ""))


def is_ebay_url(url: str) -> bool:
    hostname = urlparse(url).hostname or ""
    return bool(_EBAY_HOST_RE.search(hostname))


def fallback_url_for(url: str, proxy: str = FALLBACK_PROXY) -> str:
    """Proxy URL for ``url``; the proxied path always uses plain ``http://``."""
    return f"{proxy.rstrip('/')}/http://{_SCHEME_RE.sub('', url)}"


def _get(client: httpx.Client, url: str, headers: dict[str, str], timeout_s: float) -> httpx.Response:
    try:
        return client.get(url, headers=headers, timeout=timeout_s)
    except httpx.TimeoutException as exc:
        raise FetchTimeout(url) from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"Could not fetch listing: {exc}") from exc


def _fetch_direct(client: httpx.Client, url: str, timeout_s: float) -> str:
    res = _get(client, url, DIRECT_HEADERS, timeout_s)
    if not res.is_success:
        raise HttpStatusError(res.status_code)
    raw = res.text
    if is_likely_bot_block(raw):
        raise BotBlocked()
    return raw


def _fetch_fallback(client: httpx.Client, url: str, proxy: str, timeout_s: float) -> str:
    res = _get(client, fallback_url_for(url, proxy), FALLBACK_HEADERS, timeout_s)
    if not res.is_success:
        raise HttpStatusError(res.status_code)
    return res.text


def fetch_listing_html(
    url: str,
    *,
    client: httpx.Client | None = None,
    timeout_s: float = FETCH_TIMEOUT_S,
    fallback_proxy: str = FALLBACK_PROXY,
) -> str:
    """Fetch the raw listing page for ``url``.

    Raises ``FetchTimeout``, ``HttpStatusError`` or ``BotBlocked``. Only eBay
    hosts get the single proxy retry; every other failure propagates as is.
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout_s, follow_redirects=True)
    try:
        try:
            return _fetch_direct(client, url, timeout_s)
        except FetchError as exc:
            if not is_ebay_url(url):
                raise
            logger.warning("Direct fetch failed for eBay listing ({}): {}; trying proxy", exc.kind, url)
        return _fetch_fallback(client, url, fallback_proxy, timeout_s)
    finally:
        if owns_client:
            client.close()
