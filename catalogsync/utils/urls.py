"""Signed link utilities."""

from __future__ import annotations

import os
from urllib.parse import urlencode

from itsdangerous import URLSafeTimedSerializer

from catalogsync.config import STOREFRONT_URL

DEFAULT_EXPIRY = int(os.environ.get("SIGNED_URL_EXPIRY", 60 * 60 * 48))
RECONNECT_PURPOSE = "reconnect"


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("SIGNING_SECRET", "change-me")
    return URLSafeTimedSerializer(secret_key=secret)


def generate_token(payload: dict[str, object], purpose: str) -> str:
    return _serializer().dumps(payload, salt=purpose)


def load_token(token: str, purpose: str, max_age: int = DEFAULT_EXPIRY) -> dict[str, object]:
    data = _serializer().loads(token, max_age=max_age, salt=purpose)
    if not isinstance(data, dict):
        raise TypeError("Invalid token payload")
    return data


def reconnect_url(merchant_id: str, platform: str) -> str:
    """Link that lets a merchant re-authorize a platform without logging in."""
    token = generate_token({"merchant_id": merchant_id, "platform": platform}, RECONNECT_PURPOSE)
    query = urlencode({"token": token})
    return f"{STOREFRONT_URL.rstrip('/')}/connect/{platform}?{query}"
