"""Short tokens for serving files through the app when no bucket exposes a public URL.

The token is the first four hex characters of `md5("{file_id}:{variant}" + secret)`.
It keeps casual enumeration out, nothing more.
"""

from __future__ import annotations

import hashlib
import hmac

from mediavault.core.config import settings

TOKEN_LENGTH = 4


def generate_token(file_id: str, variant: str, secret: str | None = None) -> str:
    key = secret if secret is not None else settings.url_secret
    digest = hashlib.md5(f"{file_id}:{variant}{key}".encode("utf-8")).hexdigest()
    return digest[:TOKEN_LENGTH]


def verify_token(file_id: str, variant: str, token: str, secret: str | None = None) -> bool:
    if not token or len(token) != TOKEN_LENGTH:
        return False
    return hmac.compare_digest(generate_token(file_id, variant, secret), token.lower())


def signed_path(file_id: str, variant: str, secret: str | None = None) -> str:
    return f"/file/{file_id}/{variant}/{generate_token(file_id, variant, secret)}"


def signed_url(file_id: str, variant: str, base_url: str = "", secret: str | None = None) -> str:
    return f"{base_url.rstrip('/')}{signed_path(file_id, variant, secret)}"
