"""Flask JSON API in front of the expense store and the remote services."""

import functools
import logging
from typing import Any

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException, NotFound, Unauthorized

from expensedesk.config import ConfigurationError
from expensedesk.integrations.deepgram import ConnectionState
from expensedesk.integrations.firebase_auth import FirebaseAuthError
from expensedesk.integrations.shopify import ShopifyApiError
from expensedesk.integrations.veryfi import VeryfiApiError
from expensedesk.models import Expense, ExpenseFilter, Vendor
from expensedesk.receipts import ReceiptProcessingError, describe_receipt_error
from expensedesk.state import AppServices, build_services
from expensedesk.utils.correlation import (
    analyze_correlation,
    parse_orders_csv,
    parse_sessions_csv,
)
from expensedesk.utils.expense_utils import (
    calculate_expense_summary,
    calculate_expense_type_totals,
)
from expensedesk.utils.receipt_utils import IncompleteReceiptError, UploadValidationError
from expensedesk.utils.shopify_utils import (
    calculate_revenue_summary,
    convert_products_to_inventory,
)

logger = logging.getLogger(__name__)

SUMMARY_FETCH_LIMIT = 1000

api = Blueprint("api", __name__, url_prefix="/api")


def _services() -> AppServices:
    return current_app.extensions["expensedesk"]


def _bearer_token() -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _user_id() -> str:
    """Owner of the request, from the session its bearer token names."""
    token = _bearer_token()
    if token is None:
        raise Unauthorized("Not signed in")
    user = _services().auth.authenticate(token)
    if user is None:
        raise Unauthorized("Invalid or expired session")
    return user.uid


def requires_session(view):
    """Reject requests that do not carry a valid session token."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        _user_id()
        return view(*args, **kwargs)

    return wrapper


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def _list_arg(name: str) -> list[str] | None:
    values = []
    for raw in request.args.getlist(name):
        values.extend(part.strip() for part in raw.split(",") if part.strip())
    return values or None


# Auth


@api.post("/auth/signin")
def signin():
    pin = (request.get_json(silent=True) or {}).get("pin")
    try:
        user = _services().auth.sign_in_with_pin(pin)
    except (FirebaseAuthError, ConfigurationError) as e:
        logger.error("Error signing in: %s", e)
        return (
            jsonify({"success": False, "message": "Authentication failed", "error": str(e)}),
            500,
        )
    if user is None:
        return jsonify({"success": False, "message": "Invalid PIN"}), 401
    return jsonify(
        {"success": True, "user": user.model_dump(by_alias=True), "idToken": user.id_token}
    )


@api.post("/auth/signout")
def signout():
    token = _bearer_token()
    if token is not None:
        _services().auth.sign_out(token)
    return jsonify({"success": True})


# Receipts


@api.post("/veryfi/process-receipt")
def process_receipt():
    upload = request.files.get("file")
    if upload is None:
        return (
            jsonify({"error": "Missing file", "details": "No file was provided in the request"}),
            400,
        )

    # Mobile uploads carry no session and name their owner in the form.
    user_id = _user_id() if _bearer_token() else request.form.get("userId") or None
    result = _services().receipts.process(
        upload.read(),
        upload.filename,
        upload.mimetype,
        user_id=user_id,
        vendor_id=request.form.get("vendorId") or None,
    )
    return jsonify(
        {
            "receipt": result.receipt.model_dump(by_alias=True),
            "expense": result.expense.to_document(),
            "warnings": result.warnings,
            "message": result.message,
        }
    )


# Shopify


@api.get("/shopify/orders")
def shopify_orders():
    page = _services().shopify.fetch_orders(
        start_date=request.args.get("startDate"),
        end_date=request.args.get("endDate"),
        limit=request.args.get("limit", 50, type=int),
        cursor=request.args.get("cursor"),
        status=request.args.get("status"),
    )
    return jsonify(page.model_dump(by_alias=True))


@api.get("/shopify/products")
def shopify_products():
    page = _services().shopify.fetch_products(
        limit=request.args.get("limit", 250, type=int),
        cursor=request.args.get("cursor"),
        collection_id=request.args.get("collectionId"),
        product_type=request.args.get("productType"),
        vendor=request.args.get("vendor"),
    )
    payload = page.model_dump(by_alias=True)
    if request.args.get("inventory") == "true":
        payload["inventory"] = [
            item.model_dump(by_alias=True)
            for item in convert_products_to_inventory(page.products)
        ]
    return jsonify(payload)


# Diagnostics


@api.get("/test-firestore")
def test_firestore():
    try:
        return jsonify(_services().store.ping())
    except Exception as e:
        logger.error("Error testing Firestore: %s", e)
        return (
            jsonify({"success": False, "message": "Error testing Firestore", "error": str(e)}),
            500,
        )


@api.get("/test-veryfi")
def test_veryfi():
    veryfi = _services().veryfi
    missing = veryfi.config.missing("client_id", "client_secret", "username", "api_key")
    if missing:
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Missing Veryfi API credentials",
                    "missingCredentials": missing,
                }
            ),
            500,
        )
    try:
        categories = veryfi.list_categories()
    except VeryfiApiError as e:
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Veryfi API request failed",
                    "status": e.status,
                    "error": e.response_text,
                }
            ),
            e.status,
        )
    return jsonify(
        {
            "success": True,
            "message": "Veryfi API is working correctly",
            "categories": categories,
        }
    )


# Expenses


def _owned_expense(expense_id: str) -> Expense:
    user_id = _user_id()
    expense = _services().store.get_expense_by_id(expense_id)
    if expense is None or expense.user_id != user_id:
        raise NotFound("Expense not found")
    return expense


@api.get("/expenses")
def list_expenses():
    expense_filter = ExpenseFilter(
        start_date=request.args.get("startDate"),
        end_date=request.args.get("endDate"),
        min_amount=request.args.get("minAmount", type=float),
        max_amount=request.args.get("maxAmount", type=float),
        categories=_list_arg("categories"),
        vendor_ids=_list_arg("vendorIds"),
        search_term=request.args.get("searchTerm"),
        tags=_list_arg("tags"),
    )
    page = _services().store.get_expenses(
        _user_id(),
        expense_filter,
        limit_count=request.args.get("limit", 50, type=int),
        cursor=request.args.get("cursor"),
    )
    return jsonify(page.model_dump(by_alias=True))


@api.post("/expenses")
def create_expense():
    expense = _services().store.add_expense(_user_id(), _json_body())
    return jsonify(expense.model_dump(by_alias=True)), 201


@api.get("/expenses/summary")
def expense_summary():
    page = _services().store.get_expenses(_user_id(), limit_count=SUMMARY_FETCH_LIMIT)
    return jsonify(
        {
            "summary": calculate_expense_summary(page.expenses).model_dump(by_alias=True),
            "typeTotals": calculate_expense_type_totals(page.expenses).model_dump(
                by_alias=True
            ),
        }
    )


@api.get("/expenses/<expense_id>")
def get_expense(expense_id):
    return jsonify(_owned_expense(expense_id).model_dump(by_alias=True))


@api.patch("/expenses/<expense_id>")
def update_expense(expense_id):
    _owned_expense(expense_id)
    _services().store.update_expense(expense_id, _json_body())
    return jsonify({"success": True, "id": expense_id})


@api.delete("/expenses/<expense_id>")
def delete_expense(expense_id):
    _owned_expense(expense_id)
    _services().store.delete_expense(expense_id)
    return jsonify({"success": True, "id": expense_id})


# Vendors


def _owned_vendor(vendor_id: str) -> Vendor:
    user_id = _user_id()
    vendor = _services().store.get_vendor_by_id(vendor_id)
    if vendor is None or vendor.user_id != user_id:
        raise NotFound("Vendor not found")
    return vendor


@api.get("/vendors")
def list_vendors():
    vendors = _services().store.get_vendors(_user_id())
    return jsonify([vendor.model_dump(by_alias=True) for vendor in vendors])


@api.post("/vendors")
def create_vendor():
    vendor = _services().store.add_vendor(_user_id(), _json_body())
    return jsonify(vendor.model_dump(by_alias=True)), 201


@api.get("/vendors/<vendor_id>")
def get_vendor(vendor_id):
    return jsonify(_owned_vendor(vendor_id).model_dump(by_alias=True))


@api.patch("/vendors/<vendor_id>")
def update_vendor(vendor_id):
    _owned_vendor(vendor_id)
    _services().store.update_vendor(vendor_id, _json_body())
    return jsonify({"success": True, "id": vendor_id})


@api.delete("/vendors/<vendor_id>")
def delete_vendor(vendor_id):
    _owned_vendor(vendor_id)
    _services().store.delete_vendor(vendor_id)
    return jsonify({"success": True, "id": vendor_id})


# Settings


@api.get("/settings")
@requires_session
def get_settings():
    return jsonify(_services().settings.ensure_loaded().model_dump(by_alias=True))


@api.put("/settings")
@requires_session
def put_settings():
    body = _json_body()
    settings = _services().settings
    settings.ensure_loaded()
    return jsonify(settings.set_logo_url(body.get("logoUrl")).model_dump(by_alias=True))


@api.post("/settings/logo")
@requires_session
def upload_logo():
    upload = request.files.get("logo") or request.files.get("file")
    if upload is None:
        return (
            jsonify({"error": "Missing file", "details": "No logo was provided in the request"}),
            400,
        )
    settings = _services().settings
    settings.ensure_loaded()
    url = settings.upload_logo(upload.read(), upload.filename, upload.mimetype)
    return jsonify({"logoUrl": url})


# Analytics


@api.get("/analytics/revenue")
def revenue():
    orders = _services().shopify.fetch_all_orders(
        start_date=request.args.get("startDate"),
        end_date=request.args.get("endDate"),
        status=request.args.get("status", "any"),
    )
    return jsonify(calculate_revenue_summary(orders).model_dump(by_alias=True))


def _csv_upload(name: str) -> str:
    upload = request.files.get(name)
    if upload is None:
        raise ValueError(f"Missing CSV file: {name}")
    return upload.read().decode("utf-8-sig")


@api.post("/analytics/correlation")
def correlation():
    orders = parse_orders_csv(_csv_upload("orders"))
    sessions = parse_sessions_csv(_csv_upload("sessions"))
    return jsonify(analyze_correlation(orders, sessions).model_dump(by_alias=True))


# Speech


@api.post("/deepgram/transcribe")
@requires_session
def transcribe():
    speech = _services().speech
    if speech.state != ConnectionState.CONNECTED:
        speech.connect()
    if speech.state != ConnectionState.CONNECTED:
        raise ConfigurationError(
            "Deepgram API credentials not configured. Missing: DEEPGRAM_API_KEY"
        )
    text = speech.transcribe(request.get_data(), request.mimetype or "audio/wav")
    return jsonify(
        {"transcript": text, "fullTranscript": speech.transcript, "state": str(speech.state)}
    )


# Error mapping


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(UploadValidationError)
    def upload_rejected(e):
        return jsonify({"error": e.message, "details": e.details}), 400

    @app.errorhandler(VeryfiApiError)
    def veryfi_failed(e):
        message, details = describe_receipt_error(e)
        return jsonify({"error": message, "details": details}), e.status

    @app.errorhandler(IncompleteReceiptError)
    def receipt_incomplete(e):
        return jsonify({"error": "Incomplete data", "details": str(e)}), 422

    @app.errorhandler(ReceiptProcessingError)
    def receipt_unusable(e):
        return jsonify({"error": e.message, "details": e.details}), e.status_code

    @app.errorhandler(ShopifyApiError)
    def shopify_failed(e):
        return jsonify({"error": str(e)}), e.status

    @app.errorhandler(ConfigurationError)
    def not_configured(e):
        logger.error("%s", e)
        return jsonify({"error": "API configuration error", "details": str(e)}), 500

    @app.errorhandler(ValidationError)
    def invalid_record(e):
        return jsonify({"error": "Invalid data", "details": str(e)}), 400

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify({"error": "Bad request", "details": str(e)}), 400

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Server error", "details": str(e)}), 500


def create_app(services: AppServices | None = None) -> Flask:
    """Build the Flask app.

    Args:
        services: Pre-built services. If None, they are built from the
            environment.

    Returns:
        Flask app with the ``/api`` blueprint registered
    """
    app = Flask(__name__)
    app.extensions["expensedesk"] = services or build_services()
    app.register_blueprint(api)
    _register_error_handlers(app)
    return app
