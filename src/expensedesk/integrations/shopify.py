"""Shopify Admin REST client for orders and products.

Pagination is cursor based: the ``Link`` response header names the next page
through its ``page_info`` parameter. Shopify rejects filter parameters on
cursor requests, so filters are only sent with the first page.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

import requests

from expensedesk.config import ShopifyConfig
from expensedesk.models import OrderPage, ProductPage, ShopifyOrder, ShopifyProduct
from expensedesk.utils.link_header import extract_cursor

logger = logging.getLogger(__name__)

MAX_ORDER_PAGES = 10


class ShopifyApiError(Exception):
    """Raised when Shopify answers with a non-2xx status."""

    def __init__(self, status: int, response_text: str) -> None:
        super().__init__(f"Shopify API error: {response_text}")
        self.status = status
        self.response_text = response_text


def to_iso_timestamp(value: str | date | datetime) -> str:
    """UTC ISO-8601 timestamp with milliseconds, e.g. ``2024-01-05T00:00:00.000Z``.

    Date-only values are taken as midnight UTC.

    Raises:
        ValueError: If a string value is not an ISO date or timestamp
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day, tzinfo=UTC)
    else:
        moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class ShopifyClient:
    """Read-only client for a single Shopify store.

    Attributes:
        config: Store URL, access token and API version
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        config: ShopifyConfig,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Lazily create and cache the HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _get(
        self, resource: str, params: list[tuple[str, str]]
    ) -> tuple[dict[str, Any], str | None]:
        config = self.config.require()
        response = self.session.get(
            f"{config.admin_base_url}/{resource}.json",
            headers={
                "X-Shopify-Access-Token": config.access_token or "",
                "Content-Type": "application/json",
            },
            params=params,
            timeout=self.timeout,
        )
        if not response.ok:
            logger.error("Shopify API error: %s", response.text)
            raise ShopifyApiError(response.status_code, response.text)
        return response.json(), extract_cursor(response.links.get("next", {}).get("url"))

    def fetch_orders(
        self,
        start_date: str | date | datetime | None = None,
        end_date: str | date | datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
        status: str | None = None,
    ) -> OrderPage:
        """Fetch one page of orders.

        Args:
            start_date: Lower bound on ``created_at`` (ignored with a cursor)
            end_date: Upper bound on ``created_at`` (ignored with a cursor)
            limit: Page size
            cursor: ``page_info`` token from the previous page
            status: Order status filter, e.g. ``any`` (ignored with a cursor)

        Returns:
            OrderPage with the orders, the next cursor and the filters as given
        """
        params = [("limit", str(limit))]
        if cursor:
            params.append(("page_info", cursor))
        else:
            if start_date:
                params.append(("created_at_min", to_iso_timestamp(start_date)))
            if end_date:
                params.append(("created_at_max", to_iso_timestamp(end_date)))
            if status:
                params.append(("status", status))

        data, cursor_after = self._get("orders", params)
        return OrderPage(
            orders=[ShopifyOrder.model_validate(order) for order in data.get("orders") or []],
            next_cursor=cursor_after,
            original_params={
                "startDate": _as_param(start_date),
                "endDate": _as_param(end_date),
                "status": status,
            },
        )

    def fetch_products(
        self,
        limit: int = 250,
        cursor: str | None = None,
        collection_id: str | None = None,
        product_type: str | None = None,
        vendor: str | None = None,
    ) -> ProductPage:
        """Fetch one page of products; filters are ignored with a cursor."""
        params = [("limit", str(limit))]
        if cursor:
            params.append(("page_info", cursor))
        else:
            if collection_id:
                params.append(("collection_id", collection_id))
            if product_type:
                params.append(("product_type", product_type))
            if vendor:
                params.append(("vendor", vendor))

        data, cursor_after = self._get("products", params)
        return ProductPage(
            products=[
                ShopifyProduct.model_validate(product)
                for product in data.get("products") or []
            ],
            next_cursor=cursor_after,
            original_params={
                "collectionId": collection_id,
                "productType": product_type,
                "vendor": vendor,
            },
        )

    def fetch_all_orders(
        self,
        start_date: str | date | datetime | None = None,
        end_date: str | date | datetime | None = None,
        status: str = "any",
        page_size: int = 250,
        max_pages: int = MAX_ORDER_PAGES,
        on_progress: Callable[[str, str], None] | None = None,
    ) -> list[ShopifyOrder]:
        """Follow cursors until the last page or ``max_pages`` pages.

        Args:
            start_date: Lower bound on ``created_at``
            end_date: Upper bound on ``created_at``
            status: ``any`` includes archived orders, ``open`` does not
            page_size: Orders per request
            max_pages: Hard cap on the number of requests
            on_progress: Optional callback for progress updates (event_type, message)

        Returns:
            All fetched orders, in the order Shopify returned them
        """
        orders: list[ShopifyOrder] = []
        cursor: str | None = None
        page_count = 0

        while True:
            if cursor:
                page = self.fetch_orders(limit=page_size, cursor=cursor)
            else:
                page = self.fetch_orders(
                    start_date=start_date,
                    end_date=end_date,
                    limit=page_size,
                    status=status,
                )
            page_count += 1
            orders.extend(page.orders)
            cursor = page.next_cursor

            message = f"Fetched page {page_count} with {len(page.orders)} orders"
            logger.info("%s. Next cursor: %s", message, cursor or "none")
            if on_progress:
                on_progress("page_fetched", message)

            if not cursor:
                break
            if page_count >= max_pages:
                message = f"Reached maximum page count ({max_pages}), stopping pagination"
                logger.warning(message)
                if on_progress:
                    on_progress("page_limit", message)
                break

        logger.info("Fetched a total of %d orders across %d pages", len(orders), page_count)
        return orders


def _as_param(value: str | date | datetime | None) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.isoformat()
