"""Revenue analytics and inventory projection over Shopify order/product data."""

import re
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from expensedesk.models import (
    DailyRevenue,
    InventoryItem,
    RevenueSummary,
    ShopifyOrder,
    ShopifyProduct,
    TopProduct,
)

TOP_PRODUCT_COUNT = 5

_HTML_TAG = re.compile(r"<[^>]*>")


def _as_order(value: ShopifyOrder | Mapping[str, Any]) -> ShopifyOrder:
    if isinstance(value, ShopifyOrder):
        return value
    return ShopifyOrder.model_validate(value)


def _parse_price(value: str | float | None) -> float:
    try:
        return float(value) if value is not None else 0.0
    except ValueError:
        return 0.0


def order_date(created_at: str) -> str:
    """UTC calendar day (``YYYY-MM-DD``) of a Shopify timestamp."""
    moment = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).date().isoformat()


def calculate_revenue_summary(
    orders: Iterable[ShopifyOrder | Mapping[str, Any]],
) -> RevenueSummary:
    """Aggregate revenue, units and top products over a list of orders.

    Product revenue is line price times quantity. Top products are ordered by
    revenue descending; products with equal revenue keep the order in which
    they were first seen. Daily revenue is keyed by the UTC order date and
    sorted ascending.
    """
    total_revenue = 0.0
    total_orders = 0
    total_products = 0
    by_day: dict[str, DailyRevenue] = {}
    product_sales: dict[str, TopProduct] = {}

    for raw in orders:
        order = _as_order(raw)
        total_orders += 1
        order_revenue = _parse_price(order.total_price)
        total_revenue += order_revenue

        day = order_date(order.created_at)
        if day in by_day:
            by_day[day].revenue += order_revenue
            by_day[day].orders += 1
        else:
            by_day[day] = DailyRevenue(date=day, revenue=order_revenue, orders=1)

        for item in order.line_items:
            total_products += item.quantity
            item_revenue = _parse_price(item.price) * item.quantity
            product = product_sales.get(item.title)
            if product:
                product.revenue += item_revenue
                product.quantity += item.quantity
            else:
                product_sales[item.title] = TopProduct(
                    title=item.title, revenue=item_revenue, quantity=item.quantity
                )

    # sorted() is stable, so ties stay in first-seen order
    top_products = sorted(
        product_sales.values(), key=lambda product: product.revenue, reverse=True
    )[:TOP_PRODUCT_COUNT]

    return RevenueSummary(
        total_revenue=total_revenue,
        total_orders=total_orders,
        average_order_value=total_revenue / total_orders if total_orders else 0.0,
        total_products=total_products,
        top_products=top_products,
        revenue_by_day=sorted(by_day.values(), key=lambda day: day.date),
    )


def strip_html_tags(html: str) -> str:
    return _HTML_TAG.sub("", html).strip()


def convert_products_to_inventory(
    products: Iterable[ShopifyProduct | Mapping[str, Any]],
) -> list[InventoryItem]:
    """Project Shopify products into flat inventory rows.

    Price comes from the first variant, stock is summed over every variant,
    and the category falls back from product type to vendor.
    """
    inventory = []
    for raw in products:
        product = (
            raw if isinstance(raw, ShopifyProduct) else ShopifyProduct.model_validate(raw)
        )
        main_price = _parse_price(product.variants[0].price) if product.variants else 0.0
        stock = sum(variant.inventory_quantity or 0 for variant in product.variants)
        inventory.append(
            InventoryItem(
                id=str(product.id),
                name=product.title,
                category=product.product_type or product.vendor or "Uncategorized",
                price=main_price,
                stock=stock,
                description=strip_html_tags(product.body_html)
                if product.body_html
                else None,
                image_url=product.images[0].src if product.images else None,
            )
        )
    return inventory


def get_month_name(date_string: str | None) -> str:
    """Full English month name for an ISO date, or ``Unknown``."""
    if not date_string or not isinstance(date_string, str):
        return "Unknown"
    try:
        return date.fromisoformat(date_string[:10]).strftime("%B")
    except ValueError:
        return "Unknown"
