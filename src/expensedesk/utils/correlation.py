"""Revenue vs. traffic correlation over Shopify CSV exports."""

import io
import math
import re
from collections.abc import Sequence

import pandas as pd

from expensedesk.models import AnalysisResult, CorrelationData, OrderData, SessionData

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_SESSION_COLUMNS = ("Sessions", "Total sessions", "session_count")


def _read_rows(csv_content: str) -> list[dict[str, str]]:
    if not csv_content or not csv_content.strip():
        return []
    frame = pd.read_csv(
        io.StringIO(csv_content),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )
    return frame.to_dict(orient="records")


def _parse_int(value: str | None) -> int | None:
    """Leading integer of a string, the way spreadsheet exports are read."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def _parse_float(value: str | None) -> float:
    try:
        number = float(value) if value else 0.0
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(number) else number


def parse_orders_csv(csv_content: str) -> list[OrderData]:
    """Parse a Shopify orders export.

    Uses the ``Created at`` column (converted to a UTC day), ``Total`` and
    ``Name``/``Order ID``. Every original column is kept in ``raw``.
    """
    orders = []
    for row in _read_rows(csv_content):
        created_at = row.get("Created at")
        day = ""
        if created_at:
            moment = pd.to_datetime(created_at, utc=True, errors="coerce")
            if not pd.isna(moment):
                day = moment.date().isoformat()
        orders.append(
            OrderData(
                date=day,
                order_id=row.get("Name") or row.get("Order ID") or "",
                total_price=_parse_float(row.get("Total")),
                raw=row,
            )
        )
    return orders


def parse_sessions_csv(csv_content: str) -> list[SessionData]:
    """Parse a Shopify sessions report.

    The session count is read from the first known column that is present.
    Failing that, any column whose name mentions "session" and holds an
    integer is used.
    """
    sessions = []
    for row in _read_rows(csv_content):
        day = row.get("Date") or row.get("Day") or ""
        count: int | None = 0
        for column in _SESSION_COLUMNS:
            if column in row:
                count = _parse_int(row[column])
                break
        else:
            for key, value in row.items():
                if "session" in key.lower() and _parse_int(value) is not None:
                    count = _parse_int(value)
                    break
        sessions.append(SessionData(date=day, sessions=count or 0, raw=row))
    return sessions


def calculate_pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Sample Pearson correlation coefficient of two equal-length series.

    Returns 0.0 when the lengths differ, the series are empty, or either
    series has zero variance.
    """
    n = len(x)
    if n != len(y) or n == 0:
        return 0.0

    x_total = 0.0
    y_total = 0.0
    for i in range(n):
        x_total += x[i]
        y_total += y[i]
    x_mean = x_total / n
    y_mean = y_total / n

    covariance = 0.0
    x_spread = 0.0
    y_spread = 0.0
    for i in range(n):
        x_diff = x[i] - x_mean
        y_diff = y[i] - y_mean
        covariance += x_diff * y_diff
        x_spread += x_diff * x_diff
        y_spread += y_diff * y_diff

    if x_spread == 0 or y_spread == 0:
        return 0.0
    return covariance / (math.sqrt(x_spread) * math.sqrt(y_spread))


def analyze_correlation(
    orders: Sequence[OrderData], sessions: Sequence[SessionData]
) -> AnalysisResult:
    """Join daily revenue with daily sessions and correlate the two.

    Every date seen in either input counts toward the totals; only dates with
    revenue or sessions produce a row and feed the correlation.
    """
    revenue_by_date: dict[str, float] = {}
    orders_by_date: dict[str, int] = {}
    for order in orders:
        revenue_by_date[order.date] = revenue_by_date.get(order.date, 0.0) + order.total_price
        orders_by_date[order.date] = orders_by_date.get(order.date, 0) + 1

    sessions_by_date: dict[str, int] = {}
    for session in sessions:
        sessions_by_date[session.date] = (
            sessions_by_date.get(session.date, 0) + session.sessions
        )

    rows: list[CorrelationData] = []
    revenue_series: list[float] = []
    session_series: list[float] = []
    total_revenue = 0.0
    total_orders = 0
    total_sessions = 0

    for day in sorted(set(revenue_by_date) | set(sessions_by_date)):
        revenue = revenue_by_date.get(day, 0.0)
        order_count = orders_by_date.get(day, 0)
        session_count = sessions_by_date.get(day, 0)

        total_revenue += revenue
        total_orders += order_count
        total_sessions += session_count

        if revenue > 0 or session_count > 0:
            rows.append(
                CorrelationData(
                    date=day,
                    revenue=revenue,
                    sessions=session_count,
                    conversion_rate=(order_count / session_count) * 100
                    if session_count > 0
                    else 0.0,
                    average_order_value=revenue / order_count if order_count > 0 else 0.0,
                )
            )
            revenue_series.append(revenue)
            session_series.append(session_count)

    return AnalysisResult(
        correlation_data=rows,
        pearson_correlation=calculate_pearson_correlation(revenue_series, session_series),
        total_revenue=total_revenue,
        total_orders=total_orders,
        total_sessions=total_sessions,
        average_conversion_rate=(total_orders / total_sessions) * 100
        if total_sessions > 0
        else 0.0,
        average_order_value=total_revenue / total_orders if total_orders > 0 else 0.0,
    )
