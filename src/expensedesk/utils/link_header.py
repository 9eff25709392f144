from urllib.parse import parse_qs, urlparse


def extract_cursor(url: str | None) -> str | None:
    """
    Returns the ``page_info`` query parameter of a pagination URL, if any.

    The URL is usually ``response.links["next"]["url"]`` from requests, which
    has already split the Link header into its entries.
    """
    if not url:
        return None

    values = parse_qs(urlparse(url).query).get("page_info")
    return values[0] if values else None
