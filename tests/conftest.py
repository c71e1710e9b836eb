from __future__ import annotations

from typing import Callable

import httpx
import pytest

from artdetective_agent.config import Settings
from artdetective_agent.main import create_app
from artdetective_agent.store import MemoryStore

LISTING_HTML = """<!doctype html>
<html>
<head>
<title>Shepard Fairey "Obey Giant" Screen Print | eBay</title>
<meta property="og:image" content="https://img.example.com/obey-front.jpg">
<script type="application/ld+json">
{"@type": "Product", "name": "Shepard Fairey \\"Obey Giant\\" Screen Print",
 "offers": {"price": "450.00", "priceCurrency": "USD"},
 "image": ["https://img.example.com/obey-front.jpg", "https://img.example.com/obey-back.jpg"]}
</script>
</head>
<body>
<p>Hand-signed and numbered edition, includes certificate of authenticity.</p>
<p>Provenance: acquired from the artist's studio, released in the spring.</p>
<p>Returns accepted within 30 days. Insured shipping. eBay money back guarantee.</p>
<p>Top rated seller with 99.8% positive feedback.</p>
<p>Size 24 x 36 inches.</p>
</body>
</html>
"""


class Recorder:
    """MockTransport handler that records every request it sees."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def mock_client(responder: Callable[[httpx.Request], httpx.Response]) -> tuple[httpx.Client, Recorder]:
    recorder = Recorder(responder)
    return httpx.Client(transport=httpx.MockTransport(recorder)), recorder


@pytest.fixture
def listing_html() -> str:
    return LISTING_HTML


@pytest.fixture
def settings() -> Settings:
    return Settings(auth_secret="test-secret", undo_ttl_s=10.0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_app(settings: Settings, store: MemoryStore):
    def _make(responder: Callable[[httpx.Request], httpx.Response]):
        client, recorder = mock_client(responder)
        return create_app(settings=settings, store=store, http_client=client), recorder

    return _make
