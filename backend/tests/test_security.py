import base64
import hashlib
import hmac

import pytest

from app.core import security
from app.core.config import settings


def test_session_token_roundtrip_yields_shop() -> None:
    token = security.create_session_token("Shop-One.myshopify.com")
    claims = security.decode_session_token(token)
    assert claims is not None
    assert security.shop_from_claims(claims) == "shop-one.myshopify.com"


def test_expired_session_token_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "shopify_session_token_leeway_seconds", 0)
    token = security.create_session_token("shop.myshopify.com", expires_in_seconds=-30)
    assert security.decode_session_token(token) is None


def test_token_signed_with_other_secret_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    token = security.create_session_token("shop.myshopify.com")
    monkeypatch.setattr(settings, "shopify_api_secret", "a-completely-different-secret")
    assert security.decode_session_token(token) is None


def test_shop_from_claims_requires_https_dest() -> None:
    assert security.shop_from_claims({"dest": "http://shop.myshopify.com"}) is None
    assert security.shop_from_claims({"dest": ""}) is None
    assert (
        security.shop_from_claims({"dest": "https://a.myshopify.com", "iss": "https://b.myshopify.com/admin"}) is None
    )


def test_webhook_hmac_matches_shopify_format() -> None:
    body = b'{"id": 1}'
    expected = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
    assert security.webhook_hmac_digest(body, "secret") == expected
    assert security.verify_webhook_hmac(body, expected, "secret")
    assert not security.verify_webhook_hmac(body + b" ", expected, "secret")
    assert not security.verify_webhook_hmac(body, None, "secret")
    assert not security.verify_webhook_hmac(body, expected, "")


def test_secrets_match_requires_both_values() -> None:
    assert security.secrets_match("abc", "abc")
    assert not security.secrets_match("abc", "abd")
    assert not security.secrets_match("", "")
    assert not security.secrets_match(None, "abc")
