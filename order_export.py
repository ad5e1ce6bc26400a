"""
Order export: pull orders from the Admin REST API and flatten them into the
Shopify-admin style orders CSV, one row per line item.
"""
import json
import logging
import urllib.parse
from typing import Any, Dict, Iterable, List, Optional

from shopify_api import DEFAULT_API_VERSION, ShopifyAPIError, api_url, get_page, shopify_get

logger = logging.getLogger(__name__)

PAGE_SIZE = 250

# How a column renders its source value.
RAW = "raw"      # None -> "", everything else stringified (false, 0 kept)
BLANK = "blank"  # any falsy value -> ""
JSON = "json"    # compact JSON text, "" when absent or null

# (header, source object, dotted path, mode). Numeric path segments index lists.
COLUMNS = [
    ("Name", "order", "name", RAW),
    ("Email", "order", "email", BLANK),
    ("Financial Status", "order", "financial_status", BLANK),
    ("Paid at", "order", "processed_at", BLANK),
    ("Fulfillment Status", "order", "fulfillment_status", BLANK),
    ("Fulfilled at", "item", "fulfilled_at", BLANK),
    ("Property Name", "item", "properties.0.name", BLANK),
    ("Property Value", "item", "properties.0.value", BLANK),
    ("Accepts Marketing", "order", "buyer_accepts_marketing", RAW),
    ("Currency", "order", "currency", RAW),
    ("Subtotal", "order", "subtotal_price", RAW),
    ("Shipping", "order", "total_shipping_price_set.shop_money.amount", BLANK),
    ("Taxes", "order", "total_tax", RAW),
    ("Total", "order", "total_price", RAW),
    ("Discount Code", "order", "discount_codes.0.code", BLANK),
    ("Discount Amount", "order", "discount_codes.0.amount", BLANK),
    ("Shipping Method", "order", "shipping_lines.0.title", BLANK),
    ("Created at", "order", "created_at", RAW),
    ("Lineitem quantity", "item", "quantity", RAW),
    ("Lineitem name", "item", "name", RAW),
    ("Lineitem price", "item", "price", RAW),
    ("Lineitem compare at price", "item", "compare_at_price", BLANK),
    ("Lineitem sku", "item", "sku", BLANK),
    ("Lineitem requires shipping", "item", "requires_shipping", RAW),
    ("Lineitem taxable", "item", "taxable", RAW),
    ("Lineitem fulfillment status", "item", "fulfillment_status", BLANK),
    ("Billing Name", "order", "billing_address.name", BLANK),
    # Street and Address1 share a source, same as the Shopify admin export.
    ("Billing Street", "order", "billing_address.address1", BLANK),
    ("Billing Address1", "order", "billing_address.address1", BLANK),
    ("Billing Address2", "order", "billing_address.address2", BLANK),
    ("Billing Company", "order", "billing_address.company", BLANK),
    ("Billing City", "order", "billing_address.city", BLANK),
    ("Billing Zip", "order", "billing_address.zip", BLANK),
    ("Billing Province", "order", "billing_address.province", BLANK),
    ("Billing Country", "order", "billing_address.country", BLANK),
    ("Billing Phone", "order", "billing_address.phone", BLANK),
    ("Shipping Name", "order", "shipping_address.name", BLANK),
    ("Shipping Street", "order", "shipping_address.address1", BLANK),
    ("Shipping Address1", "order", "shipping_address.address1", BLANK),
    ("Shipping Address2", "order", "shipping_address.address2", BLANK),
    ("Shipping Company", "order", "shipping_address.company", BLANK),
    ("Shipping City", "order", "shipping_address.city", BLANK),
    ("Shipping Zip", "order", "shipping_address.zip", BLANK),
    ("Shipping Province", "order", "shipping_address.province", BLANK),
    ("Shipping Country", "order", "shipping_address.country", BLANK),
    ("Shipping Phone", "order", "shipping_address.phone", BLANK),
    ("Notes", "order", "note", BLANK),
    ("Note Attributes", "order", "note_attributes", JSON),
    ("Cancelled at", "order", "cancelled_at", BLANK),
    ("Payment Method", "order", "payment_gateway_names.0", BLANK),
    ("Payment Reference", "order", "payment_details.credit_card_number", BLANK),
    ("Refunded Amount", "order", "refunds.0.transactions.0.amount", BLANK),
    ("Vendor", "item", "vendor", BLANK),
    ("Outstanding Balance", "order", "outstanding_balance", BLANK),
    ("Employee", "order", "source_name", BLANK),
    ("Location", "order", "location_id", BLANK),
    ("Device ID", "order", "device_id", BLANK),
    ("Id", "order", "id", RAW),
    ("Tags", "order", "tags", RAW),
    ("Risk Level", "order", "risk_level", BLANK),
    ("Source", "order", "source_name", BLANK),
    ("Lineitem discount", "item", "total_discount", BLANK),
    ("Tax 1 Name", "item", "tax_lines.0.title", BLANK),
    ("Tax 1 Value", "item", "tax_lines.0.price", BLANK),
    ("Tax 2 Name", "item", "tax_lines.1.title", BLANK),
    ("Tax 2 Value", "item", "tax_lines.1.price", BLANK),
    ("Tax 3 Name", "item", "tax_lines.2.title", BLANK),
    ("Tax 3 Value", "item", "tax_lines.2.price", BLANK),
    ("Tax 4 Name", "item", "tax_lines.3.title", BLANK),
    ("Tax 4 Value", "item", "tax_lines.3.price", BLANK),
    ("Tax 5 Name", "item", "tax_lines.4.title", BLANK),
    ("Tax 5 Value", "item", "tax_lines.4.price", BLANK),
    ("Phone", "order", "phone", BLANK),
    ("Receipt Number", "order", "receipt_number", BLANK),
    ("Duties", "order", "total_duties_set.shop_money.amount", BLANK),
    ("Billing Province Name", "order", "billing_address.province", BLANK),
    ("Shipping Province Name", "order", "shipping_address.province", BLANK),
    ("Payment ID", "order", "payment_details.credit_card_bin", BLANK),
    ("Payment Terms Name", "order", "payment_terms.name", BLANK),
    ("Next Payment Due At", "order", "payment_terms.next_payment_due_at", BLANK),
    ("Payment References", "order", "payment_terms.payment_schedules", JSON),
]

CSV_HEADERS = [c[0] for c in COLUMNS]


class OrderExportError(Exception):
    pass


class OrderNotFoundError(OrderExportError):
    pass


def _dig(obj: Any, path: str) -> Any:
    for key in path.split("."):
        if key.isdigit():
            if not isinstance(obj, list) or int(key) >= len(obj):
                return None
            obj = obj[int(key)]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
    return obj


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(_text(v) for v in value)
    return str(value)


def render_cell(value: Any, mode: str = RAW) -> str:
    if mode == JSON:
        value = "" if value is None else json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    elif mode == BLANK and not value:
        value = ""
    return '"' + _text(value).replace('"', '""') + '"'


def order_rows(order: Dict[str, Any]) -> List[str]:
    rows = []
    for item in order.get("line_items") or []:
        sources = {"order": order, "item": item}
        cells = [render_cell(_dig(sources[src], path), mode) for _, src, path, mode in COLUMNS]
        rows.append(",".join(cells))
    return rows


def orders_to_csv(orders: Iterable[Dict[str, Any]]) -> str:
    lines = [",".join(CSV_HEADERS)]
    for order in orders:
        lines.extend(order_rows(order))
    return "\n".join(lines)


def fetch_order(shop: str, token: str, order_id: str,
                api_version: str = DEFAULT_API_VERSION, timeout: float = 30) -> Dict[str, Any]:
    path = f"orders/{urllib.parse.quote(str(order_id), safe='')}.json"
    try:
        data = shopify_get(shop, token, path, api_version=api_version, timeout=timeout)
    except ShopifyAPIError as e:
        if e.status_code == 404:
            raise OrderNotFoundError(f"Order {order_id} not found") from e
        raise OrderExportError(f"Failed to fetch order {order_id}: {e}") from e
    order = data.get("order")
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def fetch_all_orders(shop: str, token: str, api_version: str = DEFAULT_API_VERSION,
                     max_pages: int = 1000, timeout: float = 30) -> List[Dict[str, Any]]:
    """
    Walk orders.json page by page, following the Link header's rel="next"
    URL until it disappears. The next URL already carries page_info and
    limit, so only the first request sends query params.
    """
    orders: List[Dict[str, Any]] = []
    url: Optional[str] = api_url(shop, "orders.json", api_version)
    params: Optional[Dict[str, Any]] = {"limit": PAGE_SIZE, "status": "any"}
    pages = 0
    while url:
        if pages >= max_pages:
            raise OrderExportError(f"Stopped after {pages} pages, order listing for {shop} did not end")
        try:
            data, url = get_page(url, token, params=params, timeout=timeout)
        except ShopifyAPIError as e:
            raise OrderExportError(f"Failed to fetch orders: {e}") from e
        params = None
        pages += 1
        orders.extend(data.get("orders") or [])
    logger.info("fetched %d orders in %d pages for %s", len(orders), pages, shop)
    return orders


def get_all_orders_csv(shop: str, access_token: str, order_id: Optional[str] = None,
                       api_version: str = DEFAULT_API_VERSION, max_pages: int = 1000,
                       timeout: float = 30) -> str:
    if order_id:
        orders = [fetch_order(shop, access_token, order_id, api_version=api_version, timeout=timeout)]
    else:
        orders = fetch_all_orders(shop, access_token, api_version=api_version,
                                  max_pages=max_pages, timeout=timeout)
    return orders_to_csv(orders)
