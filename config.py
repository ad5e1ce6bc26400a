"""
Runtime configuration.

Values come from the process environment; a local `.env` file is loaded
first when present so development setups don't need exported variables.
"""
import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

REQUIRED_KEYS = ("SHOPIFY_API_KEY", "SHOPIFY_API_SECRET", "HOST", "APP_HANDLE")


class ConfigError(Exception):
    pass


class Settings(BaseModel):
    api_key: str
    api_secret: str
    host: str = Field(..., description="Public base URL of this app, e.g. https://exporter.example.com")
    app_handle: str = Field(..., description="App handle used for the admin redirect after billing")
    scopes: List[str] = Field(default_factory=lambda: ["read_orders"])
    api_version: str = "2025-04"
    billing_test: bool = False
    shops_db_file: str = "shops.json"
    state_file: str = "oauth_states.json"
    state_ttl_seconds: int = 600
    export_max_pages: int = 1000
    timeout_seconds: float = 30
    port: int = 8000
    log_level: str = "INFO"


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env=None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ

    missing = [k for k in REQUIRED_KEYS if not env.get(k)]
    if missing:
        raise ConfigError(f"Missing required env vars: {', '.join(missing)}")

    scopes = [s.strip() for s in env.get("SHOPIFY_SCOPES", "read_orders").split(",") if s.strip()]
    return Settings(
        api_key=env["SHOPIFY_API_KEY"],
        api_secret=env["SHOPIFY_API_SECRET"],
        host=env["HOST"].rstrip("/"),
        app_handle=env["APP_HANDLE"],
        scopes=scopes,
        api_version=env.get("SHOPIFY_API_VERSION", "2025-04"),
        billing_test=_flag(env.get("SHOPIFY_BILLING_TEST", "false")),
        shops_db_file=env.get("SHOPS_DB_FILE", "shops.json"),
        state_file=env.get("OAUTH_STATE_FILE", "oauth_states.json"),
        state_ttl_seconds=int(env.get("OAUTH_STATE_TTL_SECONDS", 600)),
        export_max_pages=int(env.get("EXPORT_MAX_PAGES", 1000)),
        timeout_seconds=float(env.get("SHOPIFY_TIMEOUT_SECONDS", 30)),
        port=int(env.get("PORT", 8000)),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
