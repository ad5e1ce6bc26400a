import hashlib
import hmac
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from shopify_oauth import (
    ShopifyOAuthError,
    build_install_url,
    canonical_message,
    exchange_code_for_token,
    is_valid_shop,
    new_state,
    verify_hmac,
)
from tests.conftest import TEST_API_KEY, TEST_API_SECRET, TEST_SHOP, make_response, sign


def _signed_params():
    params = {
        "code": "auth-code-123",
        "shop": TEST_SHOP,
        "state": "nonce-abc",
        "timestamp": "1710000000",
    }
    params["hmac"] = sign(params)
    return params


def test_verify_hmac_accepts_valid_signature():
    assert verify_hmac(_signed_params(), TEST_API_SECRET) is True


def test_verify_hmac_ignores_signature_key():
    params = _signed_params()
    params["signature"] = "legacy"
    assert verify_hmac(params, TEST_API_SECRET) is True


def test_verify_hmac_rejects_tampered_params():
    params = _signed_params()
    params["code"] = "different-code"
    assert verify_hmac(params, TEST_API_SECRET) is False


def test_verify_hmac_rejects_every_single_character_flip():
    params = _signed_params()
    good = params["hmac"]
    for i, ch in enumerate(good):
        flipped = "0" if ch != "0" else "1"
        params["hmac"] = good[:i] + flipped + good[i + 1:]
        assert verify_hmac(params, TEST_API_SECRET) is False


def test_verify_hmac_wrong_secret():
    assert verify_hmac(_signed_params(), "wrong-secret") is False


def test_verify_hmac_missing_hmac_returns_false():
    params = _signed_params()
    del params["hmac"]
    assert verify_hmac(params, TEST_API_SECRET) is False


def test_verify_hmac_length_mismatch_returns_false():
    params = _signed_params()
    params["hmac"] = "abc"
    assert verify_hmac(params, TEST_API_SECRET) is False


def test_canonical_message_sorts_and_joins_lists():
    query = {"shop": "a.myshopify.com", "ids": ["2", "1"], "hmac": "x", "code": "c"}
    assert canonical_message(query) == "code=c&ids=2,1&shop=a.myshopify.com"


def test_verify_hmac_with_list_values():
    query = {"ids": ["1", "2"], "shop": TEST_SHOP}
    digest = hmac.new(TEST_API_SECRET.encode(), f"ids=1,2&shop={TEST_SHOP}".encode(), hashlib.sha256).hexdigest()
    query["hmac"] = digest
    assert verify_hmac(query, TEST_API_SECRET) is True


@pytest.mark.parametrize("shop,ok", [
    ("store.myshopify.com", True),
    ("", False),
    ("store.example.com", False),
    ("myshopify.com.evil.com", False),
])
def test_is_valid_shop(shop, ok):
    assert is_valid_shop(shop) is ok


def test_new_state_is_random_hex():
    a, b = new_state(), new_state()
    assert a != b
    assert len(a) == 32
    int(a, 16)


def test_build_install_url():
    url = build_install_url(TEST_SHOP, TEST_API_KEY, ["read_orders", "read_products"],
                            "https://app.example.com/auth/callback", "nonce")
    parsed = urlparse(url)
    assert parsed.scheme == "https"
    assert parsed.netloc == TEST_SHOP
    assert parsed.path == "/admin/oauth/authorize"
    query = parse_qs(parsed.query)
    assert query["client_id"] == [TEST_API_KEY]
    assert query["scope"] == ["read_orders,read_products"]
    assert query["redirect_uri"] == ["https://app.example.com/auth/callback"]
    assert query["state"] == ["nonce"]


def test_exchange_code_for_token_success():
    with patch("requests.post", return_value=make_response(200, {"access_token": "shpat_123"})) as post:
        token = exchange_code_for_token(TEST_SHOP, "code", TEST_API_KEY, TEST_API_SECRET)
    assert token == "shpat_123"
    args, kwargs = post.call_args
    assert args[0] == f"https://{TEST_SHOP}/admin/oauth/access_token"
    assert kwargs["json"] == {"client_id": TEST_API_KEY, "client_secret": TEST_API_SECRET, "code": "code"}


def test_exchange_code_for_token_http_error():
    with patch("requests.post", return_value=make_response(400, {"error": "invalid_request"})):
        with pytest.raises(ShopifyOAuthError, match="400"):
            exchange_code_for_token(TEST_SHOP, "code", TEST_API_KEY, TEST_API_SECRET)


def test_exchange_code_for_token_missing_token():
    with patch("requests.post", return_value=make_response(200, {"scope": "read_orders"})):
        with pytest.raises(ShopifyOAuthError, match="No access_token"):
            exchange_code_for_token(TEST_SHOP, "code", TEST_API_KEY, TEST_API_SECRET)


def test_exchange_code_for_token_transport_error():
    with patch("requests.post", side_effect=requests.ConnectionError("boom")):
        with pytest.raises(ShopifyOAuthError):
            exchange_code_for_token(TEST_SHOP, "code", TEST_API_KEY, TEST_API_SECRET)
