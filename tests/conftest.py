import hashlib
import hmac
import json

import pytest
import requests
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import ShopStore, StateStore
from main import app, get_shop_store, get_state_store

TEST_SHOP = "test-store.myshopify.com"
TEST_API_KEY = "test-api-key"
TEST_API_SECRET = "test-api-secret"
TEST_HOST = "https://exporter.example.com"


def make_response(status_code=200, body=None, link=None, url="https://test-store.myshopify.com/"):
    r = requests.Response()
    r.status_code = status_code
    r.url = url
    r._content = json.dumps(body if body is not None else {}).encode("utf-8")
    r.headers["Content-Type"] = "application/json"
    if link:
        r.headers["Link"] = link
    return r


def sign(params, secret=TEST_API_SECRET):
    message = "&".join(f"{k}={v}" for k, v in sorted(params.items()) if k not in ("hmac", "signature"))
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_key=TEST_API_KEY,
        api_secret=TEST_API_SECRET,
        host=TEST_HOST,
        app_handle="orders-csv",
        shops_db_file=str(tmp_path / "shops.json"),
        state_file=str(tmp_path / "oauth_states.json"),
    )


@pytest.fixture
def shop_store(settings):
    return ShopStore(settings.shops_db_file)


@pytest.fixture
def state_store(settings):
    return StateStore(settings.state_file, ttl_seconds=settings.state_ttl_seconds)


@pytest.fixture
def client(settings, shop_store, state_store):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_shop_store] = lambda: shop_store
    app.dependency_overrides[get_state_store] = lambda: state_store
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()
