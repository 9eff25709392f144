import pytest
import requests

from expensedesk.utils.link_header import extract_cursor

pytestmark = pytest.mark.unit

BASE = "https://shop.myshopify.com/admin/api/2023-01/orders.json"


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        (f"{BASE}?limit=50&page_info=xyz", "xyz"),
        (f"{BASE}?limit=50&fields=id,name&page_info=abc", "abc"),
        (f"{BASE}?limit=50", None),
        (None, None),
    ],
)
def test_extract_cursor(url, expected):
    assert extract_cursor(url) == expected


def _next_url(link_header):
    response = requests.Response()
    response.status_code = 200
    response.headers["Link"] = link_header
    return response.links.get("next", {}).get("url")


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (f'<{BASE}?limit=50&page_info=abc123>; rel="next"', "abc123"),
        (f'<{BASE}?limit=50&fields=id,name&page_info=abc>; rel="next"', "abc"),
        (
            f'<{BASE}?limit=50&fields=id,name&page_info=prev1>; rel="previous", '
            f'<{BASE}?limit=50&fields=id,name&page_info=next1>; rel="next"',
            "next1",
        ),
        (f'<{BASE}?limit=50&page_info=prev1>; rel="previous"', None),
    ],
)
def test_cursor_from_link_header(header, expected):
    assert extract_cursor(_next_url(header)) == expected
