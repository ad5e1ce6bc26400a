import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import requests
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from billing import BillingError, billing_return_url, create_recurring_charge, get_charge_status
from config import ConfigError, Settings, get_settings
from database import ShopStore, StateStore
from order_export import OrderExportError, get_all_orders_csv
from schemas import InstalledShop
from shopify_api import ShopifyAPIError
from shopify_oauth import (
    ShopifyOAuthError,
    build_install_url,
    exchange_code_for_token,
    is_valid_shop,
    new_state,
    verify_hmac,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail startup, not the first request, when required settings are missing.
    settings = get_settings()
    logger.info("Orders CSV Exporter ready at %s", settings.host)
    yield


app = FastAPI(title="Orders CSV Exporter", lifespan=lifespan)


def get_shop_store(settings: Settings = Depends(get_settings)) -> ShopStore:
    return ShopStore(settings.shops_db_file)


def get_state_store(settings: Settings = Depends(get_settings)) -> StateStore:
    return StateStore(settings.state_file, ttl_seconds=settings.state_ttl_seconds)


def query_dict(request: Request) -> dict:
    """Query params as a dict; repeated keys become lists."""
    out = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        out[key] = values if len(values) > 1 else values[0]
    return out


@app.get("/", response_class=HTMLResponse)
def read_root():
    return """
    <html>
      <head><title>Orders CSV Exporter</title></head>
      <body style="font-family: sans-serif; max-width: 640px; margin: 40px auto;">
        <h1>Orders CSV Exporter</h1>
        <p>Install the app on a store:</p>
        <form action="/auth" method="GET" style="margin-bottom:20px">
          <input type="text" name="shop" placeholder="store.myshopify.com" style="padding:8px;width:100%" />
          <button type="submit" style="margin-top:10px;padding:8px 12px;">Install</button>
        </form>
        <hr/>
        <p>Export CSV (after install &amp; billing):</p>
        <form action="/export-orders" method="GET">
          <input type="text" name="shop" placeholder="store.myshopify.com" style="padding:8px;width:100%" />
          <input type="text" name="orderId" placeholder="Optional: order ID" style="padding:8px;width:100%; margin-top:10px;" />
          <button type="submit" style="margin-top:10px;padding:8px 12px;">Download CSV</button>
        </form>
      </body>
    </html>
    """


@app.get("/auth")
def auth(
    shop: str = Query("", description="Store domain, e.g. store.myshopify.com"),
    settings: Settings = Depends(get_settings),
    states: StateStore = Depends(get_state_store),
):
    shop = shop.strip()
    if not is_valid_shop(shop):
        raise HTTPException(status_code=400, detail="Missing or invalid ?shop= parameter (e.g., store.myshopify.com)")

    state = new_state()
    states.add(state, shop)
    url = build_install_url(shop, settings.api_key, settings.scopes, f"{settings.host}/auth/callback", state)
    return RedirectResponse(url, status_code=302)


@app.get("/auth/callback")
def auth_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    shops: ShopStore = Depends(get_shop_store),
    states: StateStore = Depends(get_state_store),
):
    params = query_dict(request)
    shop, code, state = params.get("shop"), params.get("code"), params.get("state")
    if not shop or not code or not state or isinstance(state, list):
        raise HTTPException(status_code=400, detail="Missing required query parameters.")

    pending = states.consume(state)
    if pending is None:
        raise HTTPException(status_code=400, detail="Invalid or expired state parameter.")
    if pending.shop != shop:
        raise HTTPException(status_code=400, detail="State was issued for a different shop.")

    if not verify_hmac(params, settings.api_secret):
        raise HTTPException(status_code=400, detail="HMAC validation failed.")

    try:
        access_token = exchange_code_for_token(
            shop, code, settings.api_key, settings.api_secret, timeout=settings.timeout_seconds
        )
        shops.upsert(shop, access_token=access_token, installed_at=datetime.now(timezone.utc).isoformat())
        logger.info("installed app on %s", shop)

        confirmation_url = create_recurring_charge(
            shop,
            access_token,
            billing_return_url(settings.host, shop),
            test=settings.billing_test,
            api_version=settings.api_version,
            timeout=settings.timeout_seconds,
        )
    except (ShopifyOAuthError, BillingError, ShopifyAPIError, requests.RequestException):
        logger.exception("OAuth/billing initiation failed for %s", shop)
        raise HTTPException(status_code=500, detail="OAuth/Billing initiation error.")

    return RedirectResponse(confirmation_url, status_code=302)


@app.get("/billing/confirm")
def billing_confirm(
    shop: str = Query(""),
    charge_id: str = Query(""),
    settings: Settings = Depends(get_settings),
    shops: ShopStore = Depends(get_shop_store),
):
    shop, charge_id = shop.strip(), charge_id.strip()
    if not is_valid_shop(shop):
        raise HTTPException(status_code=400, detail="Missing or invalid shop.")
    if not charge_id:
        raise HTTPException(status_code=400, detail="Missing charge_id.")

    rec = shops.get(shop)
    if rec is None or not rec.access_token:
        raise HTTPException(status_code=400, detail="App not installed (no access token).")

    try:
        status = get_charge_status(
            shop, rec.access_token, charge_id,
            api_version=settings.api_version, timeout=settings.timeout_seconds,
        )
        if status == "active":
            shops.upsert(shop, billing_active=True, charge_id=int(charge_id))
    except (BillingError, ValueError):
        logger.exception("billing confirmation failed for %s", shop)
        raise HTTPException(status_code=500, detail="Billing confirmation error.")

    if status != "active":
        raise HTTPException(status_code=402, detail=f'Charge status is "{status}". Please approve the subscription.')

    logger.info("billing active for %s (charge %s)", shop, charge_id)
    return RedirectResponse(f"https://{shop}/admin/apps/{settings.app_handle}", status_code=302)


def require_installed_and_billed(
    shop: str = Query(""),
    shops: ShopStore = Depends(get_shop_store),
) -> InstalledShop:
    shop = shop.strip()
    if not is_valid_shop(shop):
        raise HTTPException(status_code=400, detail="Missing or invalid ?shop= parameter.")
    rec = shops.get(shop)
    if rec is None or not rec.access_token:
        raise HTTPException(
            status_code=401,
            detail="App not installed for this shop. Install via /auth?shop=STORE.myshopify.com",
        )
    if not rec.billing_active:
        raise HTTPException(
            status_code=402,
            detail="Billing inactive. Please approve the $1/month charge via /auth?shop=STORE.myshopify.com",
        )
    return InstalledShop(shop=shop, access_token=rec.access_token)


@app.get("/export-orders")
def export_orders(
    orderId: Optional[str] = Query(None, description="Export a single order by id"),
    installed: InstalledShop = Depends(require_installed_and_billed),
    settings: Settings = Depends(get_settings),
):
    try:
        csv_content = get_all_orders_csv(
            installed.shop,
            installed.access_token,
            order_id=orderId,
            api_version=settings.api_version,
            max_pages=settings.export_max_pages,
            timeout=settings.timeout_seconds,
        )
    except OrderExportError:
        logger.exception("order export failed for %s", installed.shop)
        raise HTTPException(status_code=500, detail="Error generating CSV")

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="shopify_orders.csv"'},
    )


if __name__ == "__main__":
    import uvicorn
    try:
        settings = get_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(str(e))
        sys.exit(1)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
