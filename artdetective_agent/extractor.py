"""
Listing fact extraction.

Each field is resolved from an ordered list of sources (JSON-LD, meta tags,
``<title>``, raw-text patterns); the first source that yields a value wins.
"""
from __future__ import annotations

import html
import json
import math
import re
from typing import Any, Callable, Iterable, TypeVar

from .models import ListingFacts

T = TypeVar("T")

UNTITLED = "Untitled listing"
UNKNOWN_ARTIST = "Unknown artist"
NOT_PROVIDED = "Not provided"
DEFAULT_CURRENCY = "USD"
MAX_IMAGES = 8

_JSONLD_RE = re.compile(
    r"<script[^>]+type=[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
    re.IGNORECASE | re.DOTALL,
)
_TITLE_RE = re.compile(r"<title>([^<]+)</title>", re.IGNORECASE)
_EBAY_TITLE_SUFFIX_RE = re.compile(r"\s*\|\s*eBay.*$", re.IGNORECASE)
_PRICE_JSON_RE = re.compile(r"\"price\"\s*:\s*\"?(\d+(?:\.\d+)?)\"?", re.IGNORECASE)
_PRICE_DOLLAR_RE = re.compile(r"\$(\d[\d,]*(?:\.\d+)?)")
_IMAGE_URL_RE = re.compile(
    r"https?://[^\"'<>\s]+?\.(?:jpg|jpeg|png|webp)(?:\?[^\"'<>\s]*)?",
    re.IGNORECASE,
)
_DIMENSIONS_RE = re.compile(
    r"\b(\d{1,4}(?:\.\d+)?)\s*(?:x|by)\s*(\d{1,4}(?:\.\d+)?)"
    r"(?:\s*(?:x|by)\s*(\d{1,4}(?:\.\d+)?))?"
    r"\s*(cm|mm|inches|inch|in|\")(?![A-Za-z])",
    re.IGNORECASE,
)

# Apostrophes between two letters (O'Keeffe) are part of a name, not a quote.
_QUOTE_RE = re.compile(r"[\"“”]|(?<![A-Za-z])['‘’]|['‘’](?![A-Za-z])")
_BY_RE = re.compile(r"\bby\s+([A-Za-z][A-Za-z .'\-]{1,80})", re.IGNORECASE)
_SEPARATOR_PREFIX_RE = re.compile(r"^(.+?)(?:\s+[-–—]|[-–—]\s+|\s*[|:])")
_INLINE_SEPARATOR_RE = re.compile(r"\s+[-–—]|[-–—]\s+")
_LEADING_NON_LETTERS_RE = re.compile(r"^[^A-Za-z]+")
_TRAILING_NON_NAME_RE = re.compile(r"[^A-Za-z.]+$")
_WS_RE = re.compile(r"\s+")
_BY_WORD_RE = re.compile(r"\bby\b", re.IGNORECASE)


def first_present(sources: Iterable[Callable[[], T | None]]) -> T | None:
    """Evaluate ``sources`` in order and return the first non-empty value."""
    for source in sources:
        value = source()
        if value is not None and value != "":
            return value
    return None


def dedupe(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


# --- structured data -------------------------------------------------------

def _coerce_price(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = float(value)
    except (ValueError, OverflowError):
        return None
    return price if math.isfinite(price) else None


def _jsonld_candidates(parsed: Any) -> list[dict[str, Any]]:
    if isinstance(parsed, list):
        return [p for p in parsed if isinstance(p, dict)]
    if not isinstance(parsed, dict):
        return []
    graph = parsed.get("@graph")
    if isinstance(graph, list):
        return [parsed] + [g for g in graph if isinstance(g, dict)]
    return [parsed]


def _facts_from_node(node: dict[str, Any]) -> dict[str, Any]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    if not isinstance(offers, dict):
        offers = {}

    name = node.get("name")
    currency = offers.get("priceCurrency")
    image_raw = node.get("image")
    if isinstance(image_raw, str):
        images = [image_raw]
    elif isinstance(image_raw, list):
        images = [i for i in image_raw if isinstance(i, str)]
    else:
        images = []

    return {
        "title": name.strip() if isinstance(name, str) and name.strip() else None,
        "price": _coerce_price(offers.get("price")),
        "currency": currency.strip() if isinstance(currency, str) and currency.strip() else None,
        "images": images,
    }


def extract_jsonld(raw: str) -> dict[str, Any]:
    """Facts from the first JSON-LD node that carries any of them.

    Blocks that fail to parse are skipped.
    """
    for m in _JSONLD_RE.finditer(raw or ""):
        text = (m.group(1) or "").strip()
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except (ValueError, RecursionError):
            continue
        for node in _jsonld_candidates(parsed):
            facts = _facts_from_node(node)
            if facts["title"] or facts["price"] is not None or facts["currency"] or facts["images"]:
                return facts
    return {}


# --- meta tags and title ---------------------------------------------------

def extract_meta_content(raw: str, key: str) -> str | None:
    escaped = re.escape(key)
    patterns = (
        rf"<meta[^>]+(?:property|name)=[\"']{escaped}[\"'][^>]+content=[\"']([^\"']+)[\"']",
        rf"<meta[^>]+content=[\"']([^\"']+)[\"'][^>]+(?:property|name)=[\"']{escaped}[\"']",
    )
    for pattern in patterns:
        m = re.search(pattern, raw or "", re.IGNORECASE)
        if m:
            return html.unescape(m.group(1)).strip() or None
    return None


def extract_title_tag(raw: str) -> str | None:
    m = _TITLE_RE.search(raw or "")
    if not m:
        return None
    title = _EBAY_TITLE_SUFFIX_RE.sub("", html.unescape(m.group(1))).strip()
    return title or None


# --- raw-text patterns -----------------------------------------------------

def extract_json_price(raw: str) -> float | None:
    m = _PRICE_JSON_RE.search(raw or "")
    return _coerce_price(m.group(1)) if m else None


def extract_dollar_price(raw: str) -> float | None:
    m = _PRICE_DOLLAR_RE.search(raw or "")
    return _coerce_price(m.group(1).replace(",", "")) if m else None


def extract_image_urls(raw: str) -> list[str]:
    return dedupe(m.group(0) for m in _IMAGE_URL_RE.finditer(raw or ""))[:MAX_IMAGES]


def infer_dimensions(text: str) -> str | None:
    m = _DIMENSIONS_RE.search(text or "")
    if not m:
        return None
    unit = m.group(4).lower()
    if unit in ('"', "inches", "inch"):
        unit = "in"
    third = f" x {m.group(3)}" if m.group(3) else ""
    return f"{m.group(1)} x {m.group(2)}{third} {unit}"


# --- artist ----------------------------------------------------------------

def sanitize_artist_candidate(value: str) -> str:
    value = _WS_RE.sub(" ", value or "")
    value = _LEADING_NON_LETTERS_RE.sub("", value)
    value = _TRAILING_NON_NAME_RE.sub("", value)
    return value.strip()


def looks_like_artist_name(value: str) -> bool:
    if not value or re.search(r"\d", value):
        return False
    if _QUOTE_RE.search(value) or re.search(r"[|:–—]|\s-|-\s", value):
        return False
    if _BY_WORD_RE.search(value):
        return False
    words = value.split()
    if not 2 <= len(words) <= 5:
        return False
    return all(re.search(r"[A-Za-z]", w) for w in words)


def _artist_before_quote(title: str) -> str | None:
    m = _QUOTE_RE.search(title)
    if not m or m.start() == 0:
        return None
    return sanitize_artist_candidate(title[: m.start()])


def _artist_after_by(title: str) -> str | None:
    m = _BY_RE.search(title)
    if not m:
        return None
    return sanitize_artist_candidate(_INLINE_SEPARATOR_RE.split(m.group(1), maxsplit=1)[0])


def _artist_before_separator(title: str) -> str | None:
    m = _SEPARATOR_PREFIX_RE.match(title)
    return sanitize_artist_candidate(m.group(1)) if m else None


def _artist_whole_title(title: str) -> str | None:
    return sanitize_artist_candidate(title)


_ARTIST_STRATEGIES = (
    _artist_before_quote,
    _artist_after_by,
    _artist_before_separator,
    _artist_whole_title,
)


def infer_artist_name(title: str) -> str:
    for strategy in _ARTIST_STRATEGIES:
        candidate = strategy(title or "")
        if candidate and looks_like_artist_name(candidate):
            return candidate
    return UNKNOWN_ARTIST


# --- assembly --------------------------------------------------------------

def extract_listing_facts(raw: str) -> ListingFacts:
    raw = raw or ""
    jsonld = extract_jsonld(raw)

    resolved_title = first_present([
        lambda: jsonld.get("title"),
        lambda: extract_meta_content(raw, "og:title"),
        lambda: extract_title_tag(raw),
    ])
    title = (resolved_title or UNTITLED).strip()

    price = first_present([
        lambda: jsonld.get("price"),
        lambda: extract_json_price(raw),
        lambda: extract_dollar_price(raw),
    ])

    currency = first_present([
        lambda: jsonld.get("currency"),
        lambda: extract_meta_content(raw, "product:price:currency"),
    ]) or DEFAULT_CURRENCY

    og_image = extract_meta_content(raw, "og:image")
    images = dedupe([
        *(jsonld.get("images") or []),
        *([og_image] if og_image else []),
        *extract_image_urls(raw),
    ])[:MAX_IMAGES]

    return ListingFacts(
        title=title,
        artist=infer_artist_name(resolved_title) if resolved_title else UNKNOWN_ARTIST,
        price=price,
        currency=currency,
        dimensions=infer_dimensions(raw) or NOT_PROVIDED,
        image_urls=images,
    )
