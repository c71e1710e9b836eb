from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass


class InvalidToken(Exception):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str | None
    exp: int


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(payload: str, secret: str) -> str:
    return _b64encode(hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest())


def issue_access_token(user_id: str, email: str, *, secret: str, ttl_s: int = 3600, now: float | None = None) -> str:
    issued = int(now if now is not None else time.time())
    payload = _b64encode(json.dumps({"sub": user_id, "email": email, "exp": issued + ttl_s}).encode())
    return f"{payload}.{_sign(payload, secret)}"


def issue_refresh_token() -> str:
    return f"rt_{uuid.uuid4().hex}"


def verify_access_token(token: str, *, secret: str, now: float | None = None) -> TokenClaims:
    payload, _, sig = (token or "").partition(".")
    if not payload or not sig:
        raise InvalidToken("Invalid token")
    if not hmac.compare_digest(_sign(payload, secret).encode(), sig.encode("utf-8", "surrogateescape")):
        raise InvalidToken("Invalid token signature")
    try:
        data = json.loads(_b64decode(payload))
        claims = TokenClaims(user_id=str(data["sub"]), email=data.get("email"), exp=int(data["exp"]))
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidToken("Invalid token payload") from exc
    if claims.exp < int(now if now is not None else time.time()):
        raise InvalidToken("Token expired")
    return claims
