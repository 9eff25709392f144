"""Expense aggregation and formatting helpers."""

import calendar
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from expensedesk.models import (
    Expense,
    ExpenseFields,
    ExpenseItem,
    ExpenseSummary,
    ExpenseTypeTotals,
    ReceiptData,
)

EXPENSE_CATEGORIES = [
    "Advertising",
    "Auto",
    "Bank Fees",
    "Entertainment",
    "Equipment",
    "Food",
    "Insurance",
    "Office Supplies",
    "Rent",
    "Salary",
    "Software",
    "Taxes",
    "Travel",
    "Utilities",
    "Other",
]

CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "AUD": "A$", "GBP": "£", "EUR": "€", "JPY": "¥"}


def _as_expense(value: Expense | Mapping[str, Any]) -> Expense:
    if isinstance(value, Expense):
        return value
    return Expense.model_validate(value)


def calculate_expense_summary(
    expenses: Iterable[Expense | Mapping[str, Any]],
) -> ExpenseSummary:
    """Total, per-category, per-vendor and per-month sums in a single pass.

    Blank categories are grouped under ``Uncategorized``. Months are the
    ``YYYY-MM`` prefix of the expense date.
    """
    summary = ExpenseSummary()
    for raw in expenses:
        expense = _as_expense(raw)
        amount = expense.amount
        summary.total_expenses += amount

        category = expense.category or "Uncategorized"
        breakdown = summary.category_breakdown
        breakdown[category] = breakdown.get(category, 0) + amount

        vendors = summary.vendor_breakdown
        vendors[expense.vendor_name] = vendors.get(expense.vendor_name, 0) + amount

        month = expense.date[:7]
        monthly = summary.monthly_totals
        monthly[month] = monthly.get(month, 0) + amount
    return summary


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def calculate_expense_type_totals(
    expenses: Iterable[Expense | Mapping[str, Any]],
    today: date | None = None,
    revenue_this_month: float | None = None,
) -> ExpenseTypeTotals:
    """Dashboard totals with cost of goods sold kept out of regular expenses.

    Args:
        expenses: Expenses to total
        today: Reference day (default: today)
        revenue_this_month: When given, ``net_this_month`` is revenue minus
            both expenses and COGS for the current month

    Returns:
        ExpenseTypeTotals for this month and the last three months
    """
    today = today or date.today()
    three_months_ago = _shift_months(today, -3)
    totals = ExpenseTypeTotals()

    for raw in expenses:
        expense = _as_expense(raw)
        day = date.fromisoformat(expense.date[:10])
        is_cogs = expense.type == "cogs"
        this_month = day.year == today.year and day.month == today.month
        recent = day >= three_months_ago

        if is_cogs:
            if this_month:
                totals.cogs_this_month += expense.amount
            if recent:
                totals.cogs_last_three_months += expense.amount
        else:
            if this_month:
                totals.expenses_this_month += expense.amount
            if recent:
                totals.expenses_last_three_months += expense.amount

    if revenue_this_month is not None:
        totals.net_this_month = (
            revenue_this_month - totals.expenses_this_month - totals.cogs_this_month
        )
    return totals


def _normalize_receipt_date(value: str | None) -> str:
    if not value:
        return date.today().isoformat()
    try:
        return datetime.fromisoformat(value.replace(" ", "T")).date().isoformat()
    except ValueError:
        return date.fromisoformat(value[:10]).isoformat()


def convert_receipt_to_expense(
    receipt: ReceiptData, vendor_id: str | None = None
) -> ExpenseFields:
    """Pre-fill expense fields from an OCR extraction result."""
    items = [
        ExpenseItem(
            description=item.description or "",
            quantity=item.quantity,
            unit_price=item.unit_price,
            total=item.total,
        )
        for item in receipt.items
    ]
    return ExpenseFields(
        vendor_id=vendor_id or "",
        vendor_name=receipt.vendor.name or "",
        date=_normalize_receipt_date(receipt.date),
        amount=receipt.total or 0,
        currency=receipt.currency or "USD",
        category=receipt.category or "Other",
        payment_method=receipt.payment_method,
        receipt_url=receipt.receipt_url,
        notes=receipt.notes,
        items=items,
        tax=receipt.tax,
        type="expense",
    )


def format_currency(amount: float, currency: str = "USD") -> str:
    """Format an amount for display, e.g. ``$1,234.50`` or ``EUR 12.00``."""
    symbol = CURRENCY_SYMBOLS.get(currency)
    sign = "-" if amount < 0 else ""
    if symbol:
        return f"{sign}{symbol}{abs(amount):,.2f}"
    return f"{sign}{currency} {abs(amount):,.2f}"


def format_date(date_string: str) -> str:
    """Format an ISO date for display, e.g. ``Jan 5, 2024``."""
    day = date.fromisoformat(date_string[:10])
    return f"{day.strftime('%b')} {day.day}, {day.year}"
