"""TikTok Shop request signing.

Every authenticated Open API call carries a ``sign`` query parameter computed
as HMAC-SHA256 over::

    app_secret + path + key1 + value1 + key2 + value2 ... + app_secret

with the keys sorted ascending and ``sign``/``access_token`` left out. The
HMAC key is the app secret; the digest is lowercase hex.

Values are taken with ``str()``, so callers must pass them exactly as they
will appear on the wire (the timestamp in particular).
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping

EXCLUDED_KEYS = frozenset({"sign", "access_token"})


def build_sign_string(app_secret: str, path: str, params: Mapping[str, Any]) -> str:
    keys = sorted(k for k in params if k not in EXCLUDED_KEYS)
    body = "".join(f"{key}{params[key]}" for key in keys)
    return f"{app_secret}{path}{body}{app_secret}"


def sign(app_secret: str, path: str, params: Mapping[str, Any]) -> str:
    payload = build_sign_string(app_secret, path, params)
    return hmac.new(
        app_secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
