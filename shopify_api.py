from typing import Any, Dict, Optional, Tuple

import requests

DEFAULT_API_VERSION = "2025-04"


class ShopifyAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def api_url(domain: str, path: str, api_version: str = DEFAULT_API_VERSION) -> str:
    return f"https://{domain}/admin/api/{api_version}/{path}"


def _headers(token: str) -> Dict[str, str]:
    return {
        "X-Shopify-Access-Token": token,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _json_or_raise(r: requests.Response, what: str) -> Dict[str, Any]:
    if not r.ok:
        raise ShopifyAPIError(f"{what} failed: {r.status_code} {r.text[:200]}", r.status_code)
    try:
        return r.json()
    except ValueError:
        raise ShopifyAPIError(f"{what} returned a non-JSON body", r.status_code)


def get_page(url: str, token: str, params: Optional[Dict[str, Any]] = None,
             timeout: float = 30) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    GET one page of a REST listing. Returns the decoded body and the URL
    advertised by the Link header's rel="next" relation, if any.
    """
    try:
        r = requests.get(url, headers=_headers(token), params=params, timeout=timeout)
    except requests.RequestException as e:
        raise ShopifyAPIError(f"GET {url} failed: {e}")
    data = _json_or_raise(r, f"GET {url}")
    next_url = r.links.get("next", {}).get("url")
    return data, next_url


def shopify_get(domain: str, token: str, path: str, params: Optional[Dict[str, Any]] = None,
                api_version: str = DEFAULT_API_VERSION, timeout: float = 30) -> Dict[str, Any]:
    data, _ = get_page(api_url(domain, path, api_version), token, params=params, timeout=timeout)
    return data


def shopify_post(domain: str, token: str, path: str, payload: Dict[str, Any],
                 api_version: str = DEFAULT_API_VERSION, timeout: float = 30) -> Dict[str, Any]:
    url = api_url(domain, path, api_version)
    try:
        r = requests.post(url, headers=_headers(token), json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise ShopifyAPIError(f"POST {url} failed: {e}")
    return _json_or_raise(r, f"POST {url}")
