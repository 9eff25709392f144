"""Unit tests for Shopify revenue analytics and inventory projection."""

import pytest

from expensedesk.utils.shopify_utils import (
    calculate_revenue_summary,
    convert_products_to_inventory,
    get_month_name,
    order_date,
    strip_html_tags,
)

pytestmark = pytest.mark.unit


def _order(order_id, total, created_at="2024-01-05T10:00:00Z", line_items=()):
    return {
        "id": order_id,
        "created_at": created_at,
        "total_price": total,
        "line_items": list(line_items),
    }


def _line(title, price, quantity):
    return {"title": title, "price": price, "quantity": quantity}


class TestRevenueSummary:
    def test_average_order_value(self):
        summary = calculate_revenue_summary(
            [_order(1, "50.00"), _order(2, "70.00"), _order(3, "30.00")]
        )
        assert summary.total_revenue == 150
        assert summary.total_orders == 3
        assert summary.average_order_value == 50

    def test_empty(self):
        summary = calculate_revenue_summary([])
        assert summary.total_orders == 0
        assert summary.average_order_value == 0
        assert summary.top_products == []

    def test_top_products_descending_and_capped(self):
        lines = [_line(f"P{i}", str(i), 1) for i in range(1, 8)]
        summary = calculate_revenue_summary([_order(1, "28", line_items=lines)])

        revenues = [product.revenue for product in summary.top_products]
        assert len(summary.top_products) == 5
        assert revenues == sorted(revenues, reverse=True)
        assert [product.title for product in summary.top_products] == [
            "P7",
            "P6",
            "P5",
            "P4",
            "P3",
        ]

    def test_ties_keep_first_seen_order(self):
        summary = calculate_revenue_summary(
            [
                _order(1, "30", line_items=[_line("Mug", "10", 1), _line("Cap", "10", 1)]),
                _order(2, "10", line_items=[_line("Pin", "10", 1)]),
            ]
        )
        assert [product.title for product in summary.top_products] == ["Mug", "Cap", "Pin"]

    def test_line_revenue_is_price_times_quantity(self):
        summary = calculate_revenue_summary(
            [
                _order(1, "20", line_items=[_line("Mug", "10.00", 2)]),
                _order(2, "10", line_items=[_line("Mug", "10.00", 1)]),
            ]
        )
        mug = summary.top_products[0]
        assert mug.revenue == 30
        assert mug.quantity == 3
        assert summary.total_products == 3

    def test_revenue_by_day_uses_utc_and_sorts(self):
        summary = calculate_revenue_summary(
            [
                _order(1, "10", created_at="2024-01-03T12:00:00Z"),
                _order(2, "20", created_at="2024-01-01T22:00:00-05:00"),
                _order(3, "5", created_at="2024-01-02T01:00:00Z"),
            ]
        )
        days = [(day.date, day.revenue, day.orders) for day in summary.revenue_by_day]
        assert days == [("2024-01-02", 25, 2), ("2024-01-03", 10, 1)]


def test_order_date_converts_offsets():
    assert order_date("2024-01-01T22:00:00-05:00") == "2024-01-02"


def test_convert_products_to_inventory():
    inventory = convert_products_to_inventory(
        [
            {
                "id": 42,
                "title": "Mug",
                "body_html": "<p>Nice <b>mug</b></p>",
                "vendor": "Acme",
                "product_type": "",
                "variants": [
                    {"price": "19.99", "inventory_quantity": 3},
                    {"price": "24.99", "inventory_quantity": 4},
                ],
                "images": [{"src": "https://cdn.example.com/mug.png"}],
            },
            {"id": 43, "title": "Sticker"},
        ]
    )

    mug, sticker = inventory
    assert mug.id == "42"
    assert mug.price == 19.99
    assert mug.stock == 7
    assert mug.category == "Acme"
    assert mug.description == "Nice mug"
    assert mug.image_url == "https://cdn.example.com/mug.png"
    assert sticker.price == 0
    assert sticker.stock == 0
    assert sticker.category == "Uncategorized"
    assert sticker.image_url is None


def test_strip_html_tags():
    assert strip_html_tags(" <div>Hello <br/>world</div> ") == "Hello world"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("2024-03-10", "March"), ("2024-12-01T00:00:00Z", "December"), (None, "Unknown"), ("garbage", "Unknown")],
)
def test_get_month_name(value, expected):
    assert get_month_name(value) == expected
