import hashlib
import hmac
import secrets
import urllib.parse
from typing import Iterable, List, Mapping, Union

import requests

SHOP_SUFFIX = ".myshopify.com"

QueryValue = Union[str, List[str]]


class ShopifyOAuthError(Exception):
    pass


def is_valid_shop(shop: str) -> bool:
    return bool(shop) and shop.endswith(SHOP_SUFFIX)


def new_state() -> str:
    return secrets.token_hex(16)


def canonical_message(query: Mapping[str, QueryValue]) -> str:
    """
    Shopify signs every query param except hmac/signature, sorted by key and
    joined as key=value with '&'. Repeated keys are joined with ','.
    """
    pairs = []
    for k in sorted(query):
        if k in ("hmac", "signature"):
            continue
        v = query[k]
        if isinstance(v, (list, tuple)):
            v = ",".join(v)
        pairs.append(f"{k}={v}")
    return "&".join(pairs)


def verify_hmac(query: Mapping[str, QueryValue], secret: str) -> bool:
    received = query.get("hmac") or ""
    if isinstance(received, (list, tuple)):
        received = received[0] if received else ""
    if not received:
        return False
    digest = hmac.new(
        secret.encode("utf-8"),
        canonical_message(query).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(digest.encode("utf-8"), received.encode("utf-8"))


def build_install_url(shop: str, api_key: str, scopes: Iterable[str], redirect_uri: str, state: str) -> str:
    base = f"https://{shop}/admin/oauth/authorize"
    params = {
        "client_id": api_key,
        "scope": ",".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{base}?{urllib.parse.urlencode(params)}"


def exchange_code_for_token(shop: str, code: str, api_key: str, api_secret: str, timeout: float = 30) -> str:
    url = f"https://{shop}/admin/oauth/access_token"
    payload = {
        "client_id": api_key,
        "client_secret": api_secret,
        "code": code,
    }
    try:
        r = requests.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise ShopifyOAuthError(f"Token exchange failed: {e}")
    if not r.ok:
        raise ShopifyOAuthError(f"Token exchange failed: {r.status_code} {r.text[:200]}")
    try:
        data = r.json()
    except ValueError:
        raise ShopifyOAuthError("Token exchange returned a non-JSON body")
    token = data.get("access_token")
    if not token:
        raise ShopifyOAuthError("No access_token returned.")
    return token
