"""
Recurring application charge handling: create the subscription after install,
then look it up again when Shopify sends the merchant back to the return URL.
"""
import logging
import urllib.parse
from typing import Optional

from shopify_api import DEFAULT_API_VERSION, ShopifyAPIError, shopify_get, shopify_post

logger = logging.getLogger(__name__)

PLAN_NAME = "Basic Plan"
PLAN_PRICE = 1.0


class BillingError(Exception):
    pass


def billing_return_url(host: str, shop: str) -> str:
    return f"{host}/billing/confirm?shop={urllib.parse.quote(shop, safe='')}"


def create_recurring_charge(shop: str, token: str, return_url: str, test: bool = False,
                            api_version: str = DEFAULT_API_VERSION, timeout: float = 30) -> str:
    """Create the plan's charge and return the merchant confirmation URL."""
    charge = {
        "name": PLAN_NAME,
        "price": PLAN_PRICE,
        "return_url": return_url,
    }
    if test:
        charge["test"] = True
    try:
        data = shopify_post(shop, token, "recurring_application_charges.json",
                            {"recurring_application_charge": charge},
                            api_version=api_version, timeout=timeout)
    except ShopifyAPIError as e:
        raise BillingError(f"Create charge failed: {e}") from e

    confirmation_url = (data.get("recurring_application_charge") or {}).get("confirmation_url")
    if not confirmation_url:
        raise BillingError("No confirmation_url for the charge.")
    logger.info("created recurring charge for %s", shop)
    return confirmation_url


def get_charge_status(shop: str, token: str, charge_id: str,
                      api_version: str = DEFAULT_API_VERSION, timeout: float = 30) -> Optional[str]:
    path = f"recurring_application_charges/{urllib.parse.quote(str(charge_id), safe='')}.json"
    try:
        data = shopify_get(shop, token, path, api_version=api_version, timeout=timeout)
    except ShopifyAPIError as e:
        raise BillingError(f"Charge lookup failed: {e}") from e

    for envelope in ("recurring_application_charge", "recurring_application_charges"):
        body = data.get(envelope)
        if isinstance(body, dict) and body.get("status"):
            return body["status"]
    return None
