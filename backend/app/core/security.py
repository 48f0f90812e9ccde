import base64
import hashlib
import hmac
import time
from typing import Any, Optional
from urllib.parse import urlparse

from jose import JWTError, jwt

from app.core.config import settings

SESSION_TOKEN_ALGORITHM = "HS256"


def decode_session_token(token: str) -> Optional[dict[str, Any]]:
    """Verify an App Bridge session token signed with the app's client secret."""
    secret = (settings.shopify_api_secret or "").strip()
    if not secret or not token:
        return None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[SESSION_TOKEN_ALGORITHM],
            audience=settings.shopify_api_key or None,
            options={
                "verify_aud": bool(settings.shopify_api_key),
                "leeway": max(0, int(settings.shopify_session_token_leeway_seconds)),
            },
        )
    except JWTError:
        return None


def shop_from_claims(claims: dict[str, Any]) -> Optional[str]:
    """`dest` carries the shop origin; `iss` must be the same shop's admin."""
    dest = urlparse(str(claims.get("dest") or ""))
    if dest.scheme != "https" or not dest.hostname:
        return None
    issuer = urlparse(str(claims.get("iss") or ""))
    if issuer.hostname and issuer.hostname != dest.hostname:
        return None
    return dest.hostname.lower()


def create_session_token(shop: str, *, expires_in_seconds: int = 60, **extra_claims: Any) -> str:
    """Mint a token shaped like App Bridge's; used by tests and local tooling."""
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": settings.shopify_api_key,
        "sub": "1",
        "iat": now,
        "nbf": now,
        "exp": now + expires_in_seconds,
    }
    claims.update(extra_claims)
    return jwt.encode(claims, settings.shopify_api_secret, algorithm=SESSION_TOKEN_ALGORITHM)


def webhook_hmac_digest(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_hmac(raw_body: bytes, header_value: str | None, secret: str) -> bool:
    if not header_value or not secret:
        return False
    return hmac.compare_digest(webhook_hmac_digest(raw_body, secret), header_value.strip())


def secrets_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
