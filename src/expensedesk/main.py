import logging
import mimetypes
from pathlib import Path

import typer
from dotenv import load_dotenv

from expensedesk.config import ConfigurationError
from expensedesk.integrations.firebase_auth import FirebaseAuthError
from expensedesk.integrations.shopify import MAX_ORDER_PAGES, ShopifyApiError
from expensedesk.integrations.veryfi import VeryfiApiError
from expensedesk.models import ExpenseFilter
from expensedesk.receipts import ReceiptProcessingError, describe_receipt_error
from expensedesk.state import build_services
from expensedesk.utils.correlation import (
    analyze_correlation,
    parse_orders_csv,
    parse_sessions_csv,
)
from expensedesk.utils.expense_utils import (
    calculate_expense_summary,
    calculate_expense_type_totals,
    format_currency,
    format_date,
)
from expensedesk.utils.receipt_utils import IncompleteReceiptError, UploadValidationError
from expensedesk.utils.shopify_utils import calculate_revenue_summary

load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(no_args_is_help=True)


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Expensedesk CLI tool."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT
    )
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def cli_progress(event_type: str, message: str):
    """Callback to handle progress events and output to CLI."""
    if "error" in event_type or "warning" in event_type or "limit" in event_type:
        typer.echo(message, err=True)
    else:
        typer.echo(message)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(5000, "--port", "-p", help="Port to listen on"),
    debug: bool = typer.Option(False, "--debug", help="Run Flask in debug mode"),
):
    """Run the JSON API server."""
    from expensedesk.web import create_app

    services = build_services()
    try:
        create_app(services).run(host=host, port=port, debug=debug)
    finally:
        services.close()


@app.command("process-receipt")
def process_receipt(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Receipt image or PDF"),
    user_id: str | None = typer.Option(None, "--user", "-u", help="Owner of the receipt"),
    vendor_id: str | None = typer.Option(None, "--vendor", help="Vendor to attach"),
    save: bool = typer.Option(False, "--save", help="Save the expense (requires --user)"),
):
    """Run a receipt through OCR and show the pre-filled expense."""
    if save and not user_id:
        typer.echo("Error: --save requires --user", err=True)
        raise typer.Exit(code=1)

    content_type = mimetypes.guess_type(path.name)[0]
    services = build_services()
    try:
        try:
            result = services.receipts.process(
                path.read_bytes(),
                path.name,
                content_type,
                user_id=user_id,
                vendor_id=vendor_id,
                on_progress=cli_progress,
            )
        except UploadValidationError as e:
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(code=1) from e
        except VeryfiApiError as e:
            message, details = describe_receipt_error(e)
            typer.echo(f"Error: {message}. {details}", err=True)
            raise typer.Exit(code=1) from e
        except (IncompleteReceiptError, ConfigurationError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1) from e
        except ReceiptProcessingError as e:
            typer.echo(f"Error: {e.message}. {e.details}", err=True)
            raise typer.Exit(code=1) from e

        expense = result.expense
        typer.echo(f"Vendor: {expense.vendor_name}")
        typer.echo(f"Date: {format_date(expense.date)}")
        typer.echo(f"Total: {format_currency(expense.amount, expense.currency)}")
        typer.echo(f"Description: {expense.notes}")

        if save:
            try:
                saved = services.store.add_expense(user_id, expense)
            except Exception as e:
                typer.echo(f"Failed to save expense: {e}", err=True)
                raise typer.Exit(code=1) from e
            typer.echo(f"Saved expense {saved.id}")
    finally:
        services.close()


@app.command()
def expenses(
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the expenses"),
    start: str | None = typer.Option(None, "--start", help="Start date (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--end", help="End date (YYYY-MM-DD)"),
    category: list[str] | None = typer.Option(None, "--category", "-c", help="Category filter"),
    search: str | None = typer.Option(None, "--search", "-s", help="Search vendor, notes, category"),
    limit: int = typer.Option(50, "--limit", "-n", help="Documents fetched per page"),
    cursor: str | None = typer.Option(None, "--cursor", help="Resume after this expense id"),
):
    """List a user's expenses."""
    expense_filter = ExpenseFilter(
        start_date=start,
        end_date=end,
        categories=category or None,
        search_term=search,
    )
    services = build_services()
    try:
        page = services.store.get_expenses(
            user_id, expense_filter, limit_count=limit, cursor=cursor
        )
    finally:
        services.close()

    if not page.expenses:
        typer.echo("No expenses found.")
    for expense in page.expenses:
        typer.echo(
            f"{expense.date[:10]}  {expense.vendor_name or '-'}  "
            f"{format_currency(expense.amount, expense.currency)}  "
            f"{expense.category or 'Uncategorized'}"
        )
    if page.cursor:
        typer.echo(f"Next cursor: {page.cursor}")


@app.command()
def summary(
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the expenses"),
    limit: int = typer.Option(1000, "--limit", "-n", help="Maximum expenses to include"),
):
    """Show expense totals by category, vendor and month."""
    services = build_services()
    try:
        page = services.store.get_expenses(user_id, limit_count=limit)
    finally:
        services.close()
    result = calculate_expense_summary(page.expenses)
    totals = calculate_expense_type_totals(page.expenses)

    typer.echo(f"Total expenses: {format_currency(result.total_expenses)}")
    typer.echo(f"This month: {format_currency(totals.expenses_this_month)}")
    typer.echo(f"COGS this month: {format_currency(totals.cogs_this_month)}")
    for title, breakdown in (
        ("By category", result.category_breakdown),
        ("By vendor", result.vendor_breakdown),
        ("By month", result.monthly_totals),
    ):
        typer.echo(f"{title}:")
        for key, amount in breakdown.items():
            typer.echo(f"  {key}: {format_currency(amount)}")


@app.command()
def revenue(
    start: str | None = typer.Option(None, "--start", help="Start date (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--end", help="End date (YYYY-MM-DD)"),
    status: str = typer.Option("any", "--status", help="Shopify order status"),
    max_pages: int = typer.Option(MAX_ORDER_PAGES, "--max-pages", help="Page cap"),
):
    """Summarize Shopify revenue for a date range."""
    services = build_services()
    try:
        orders = services.shopify.fetch_all_orders(
            start_date=start,
            end_date=end,
            status=status,
            max_pages=max_pages,
            on_progress=cli_progress,
        )
    except (ShopifyApiError, ConfigurationError, ValueError) as e:
        typer.echo(f"Error communicating with Shopify: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        services.close()

    result = calculate_revenue_summary(orders)
    typer.echo(f"Total revenue: {format_currency(result.total_revenue)}")
    typer.echo(f"Orders: {result.total_orders}")
    typer.echo(f"Average order value: {format_currency(result.average_order_value)}")
    typer.echo(f"Units sold: {result.total_products}")
    if result.top_products:
        typer.echo("Top products:")
        for product in result.top_products:
            typer.echo(
                f"  {product.title}: {format_currency(product.revenue)} "
                f"({product.quantity} sold)"
            )


@app.command()
def correlate(
    orders_csv: Path = typer.Argument(..., exists=True, dir_okay=False, help="Orders export"),
    sessions_csv: Path = typer.Argument(..., exists=True, dir_okay=False, help="Sessions report"),
):
    """Correlate daily revenue with daily sessions from Shopify CSV exports."""
    orders = parse_orders_csv(orders_csv.read_text(encoding="utf-8-sig"))
    sessions = parse_sessions_csv(sessions_csv.read_text(encoding="utf-8-sig"))
    result = analyze_correlation(orders, sessions)

    typer.echo(f"Days analyzed: {len(result.correlation_data)}")
    typer.echo(f"Pearson correlation: {result.pearson_correlation:.4f}")
    typer.echo(f"Total revenue: {format_currency(result.total_revenue)}")
    typer.echo(f"Total orders: {result.total_orders}")
    typer.echo(f"Total sessions: {result.total_sessions}")
    typer.echo(f"Conversion rate: {result.average_conversion_rate:.2f}%")


@app.command()
def signin(
    pin: str = typer.Option(..., "--pin", prompt=True, hide_input=True, help="Sign-in PIN"),
):
    """Check the PIN and open an anonymous Firebase session."""
    services = build_services()
    try:
        user = services.auth.sign_in_with_pin(pin)
    except (FirebaseAuthError, ConfigurationError) as e:
        typer.echo(f"Authentication failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        services.close()
    if not user:
        typer.echo("Invalid PIN", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Signed in as {user.uid}")


def main():
    app()


if __name__ == "__main__":
    main()
