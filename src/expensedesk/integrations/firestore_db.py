"""Firestore persistence for vendors, expenses and app settings.

Every vendor/expense query is scoped by the owning ``userId``; the security
rules reject unscoped reads. Read paths never raise: a failed query is logged
and yields an empty result. Write paths log and re-raise.

Expense documents written by older releases used ``payeeId``/``payeeName`` and
Firestore timestamps. They are brought to the current shape by
:func:`migrate_expense_document` as they are read.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from expensedesk.models import (
    EXPENSE_SCHEMA_VERSION,
    AppSettings,
    Expense,
    ExpenseFields,
    ExpenseFilter,
    ExpensePage,
    Vendor,
    VendorFields,
)

logger = logging.getLogger(__name__)

VENDORS = "vendors"
EXPENSES = "expenses"
APP_SETTINGS = "appSettings"
PUBLIC_DATA = "public_data"

MAX_VENDORS = 1000
DEFAULT_PAGE_SIZE = 50

_PROTECTED_FIELDS = ("id", "userId", "createdAt", "updatedAt", "schemaVersion")


def now_ms() -> int:
    return int(time.time() * 1000)


def _to_millis(value: Any) -> int:
    """Epoch milliseconds from a stored timestamp of any vintage."""
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, int | float) and not isinstance(value, bool) and value:
        return int(value)
    return now_ms()


def migrate_expense_document(data: Mapping[str, Any]) -> dict[str, Any]:
    """Bring a stored expense document up to the current schema version.

    Version 0 documents may name the vendor through ``payeeId``/``payeeName``.
    Timestamps of any version are normalized to epoch milliseconds, with the
    current time standing in for a missing one.

    Args:
        data: Raw document data as returned by Firestore

    Returns:
        A new dict in the current camelCase shape
    """
    migrated = dict(data)
    version = migrated.get("schemaVersion") or 0

    if version < 1:
        migrated["vendorId"] = migrated.get("vendorId") or migrated.get("payeeId") or ""
        migrated["vendorName"] = (
            migrated.get("vendorName") or migrated.get("payeeName") or ""
        )
        migrated.pop("payeeId", None)
        migrated.pop("payeeName", None)

    migrated["createdAt"] = _to_millis(migrated.get("createdAt"))
    migrated["updatedAt"] = _to_millis(migrated.get("updatedAt"))
    migrated["schemaVersion"] = EXPENSE_SCHEMA_VERSION
    return migrated


def _matches_search(expense: Expense, needle: str) -> bool:
    haystacks = (expense.vendor_name, expense.notes, expense.category)
    return any(text and needle in text.lower() for text in haystacks)


def apply_expense_filter(
    expenses: Iterable[Expense], expense_filter: ExpenseFilter
) -> list[Expense]:
    """Apply the in-memory filter stages to already fetched expenses.

    Each stage is an independent predicate, so the result does not depend on
    the order in which stages run. The date range only applies when both ends
    are given.
    """
    f = expense_filter
    stages: list[tuple[str, Callable[[Expense], bool]]] = []

    if f.start_date and f.end_date:
        start, end = f.start_date, f.end_date
        stages.append(("date range", lambda e: start <= e.date <= end))
    if f.categories:
        categories = set(f.categories)
        stages.append(("categories", lambda e: e.category in categories))
    if f.vendor_ids:
        vendor_ids = set(f.vendor_ids)
        stages.append(("vendorIds", lambda e: e.vendor_id in vendor_ids))
    if f.min_amount is not None:
        min_amount = f.min_amount
        stages.append(("minAmount", lambda e: e.amount >= min_amount))
    if f.max_amount is not None:
        max_amount = f.max_amount
        stages.append(("maxAmount", lambda e: e.amount <= max_amount))
    if f.search_term:
        needle = f.search_term.lower()
        stages.append(("searchTerm", lambda e: _matches_search(e, needle)))
    if f.tags:
        tags = set(f.tags)
        stages.append(("tags", lambda e: bool(e.tags and tags.intersection(e.tags))))

    result = list(expenses)
    for name, predicate in stages:
        before = len(result)
        result = [expense for expense in result if predicate(expense)]
        logger.debug("Applied %s filter: %d -> %d", name, before, len(result))
    return result


def _partial_update(data: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Shape a partial update: camelCase keys, protected fields removed."""
    if isinstance(data, BaseModel):
        raw = data.model_dump(by_alias=True, exclude_unset=True)
    else:
        raw = {to_camel(key) if "_" in key else key: value for key, value in data.items()}
    return {key: value for key, value in raw.items() if key not in _PROTECTED_FIELDS}


def _validated_update(
    current: Mapping[str, Any],
    data: Mapping[str, Any] | BaseModel,
    fields_model: type[BaseModel],
) -> dict[str, Any]:
    """Check a partial update against the record it will produce.

    The stored record with the update applied must still be a valid
    ``fields_model``. Only the keys of the update that the model knows are
    returned, in their validated form.

    Raises:
        pydantic.ValidationError: If the updated record would be invalid
    """
    payload = _partial_update(data)
    merged = fields_model.model_validate({**current, **payload})
    validated = merged.model_dump(by_alias=True)
    return {key: validated[key] for key in payload if key in validated}


class FirestoreStore:
    """Per-user CRUD over the ``vendors``, ``expenses`` and ``appSettings`` collections."""

    def __init__(
        self,
        client: firestore.Client | None = None,
        project: str | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            client: Optional pre-configured Firestore client. If None, a client
                for ``project`` is created lazily on first use.
            project: Google Cloud project id (default: from the environment)
        """
        self._client = client
        self._project = project
        self._client_lock = threading.Lock()

    @property
    def client(self) -> firestore.Client:
        """Lazily create and cache the Firestore client (thread-safe)."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = firestore.Client(project=self._project)
        return self._client

    @staticmethod
    def _current_document(doc_ref: Any, kind: str) -> dict[str, Any]:
        try:
            snapshot = doc_ref.get()
        except Exception:
            logger.exception("Error reading %s %s", kind.lower(), doc_ref.id)
            raise
        if not snapshot.exists:
            raise ValueError(f"{kind} {doc_ref.id} not found")
        return snapshot.to_dict() or {}

    # Vendors

    def add_vendor(self, user_id: str, vendor: VendorFields | Mapping[str, Any]) -> Vendor:
        """Create a vendor owned by ``user_id``.

        The returned record carries the generated id and the client-side
        timestamps; it is not read back from the server.

        Raises:
            ValueError: If ``user_id`` is empty or the vendor has no name
        """
        if not user_id:
            raise ValueError("User ID is required to add a vendor")

        fields = (
            vendor if isinstance(vendor, VendorFields) else VendorFields.model_validate(vendor)
        )
        now = now_ms()
        record = Vendor.model_validate(
            {
                **fields.model_dump(),
                "id": "",
                "user_id": user_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        document = record.to_document()
        document.pop("id", None)

        try:
            _, doc_ref = self.client.collection(VENDORS).add(document)
        except Exception:
            logger.exception("Error adding vendor")
            raise
        return record.model_copy(update={"id": doc_ref.id})

    def get_vendors(self, user_id: str) -> list[Vendor]:
        if not user_id:
            logger.error("get_vendors called with empty user_id")
            return []

        try:
            query = (
                self.client.collection(VENDORS)
                .where(filter=FieldFilter("userId", "==", user_id))
                .limit(MAX_VENDORS)
            )
            snapshots = list(query.stream())
        except Exception as e:
            logger.error("Error in get_vendors: %s", e)
            if "index" in str(e).lower():
                logger.warning(
                    "Missing index for vendors query. "
                    "Create the required index in the Firebase console."
                )
            return []

        logger.debug("Vendors query returned %d documents", len(snapshots))
        vendors = (self._vendor_from_snapshot(snapshot) for snapshot in snapshots)
        return [vendor for vendor in vendors if vendor is not None]

    def get_vendor_by_id(self, vendor_id: str) -> Vendor | None:
        if not vendor_id:
            logger.error("get_vendor_by_id called with empty vendor_id")
            return None
        try:
            snapshot = self.client.collection(VENDORS).document(vendor_id).get()
        except Exception as e:
            logger.error("Error getting vendor by ID: %s", e)
            return None
        if not snapshot.exists:
            return None
        return self._vendor_from_snapshot(snapshot)

    def update_vendor(self, vendor_id: str, data: Mapping[str, Any] | BaseModel) -> None:
        """Apply a partial update to a vendor.

        Raises:
            ValueError: If ``vendor_id`` is empty or names no vendor
            pydantic.ValidationError: If the updated vendor would be invalid
        """
        if not vendor_id:
            raise ValueError("Vendor ID is required to update a vendor")
        doc_ref = self.client.collection(VENDORS).document(vendor_id)
        current = self._current_document(doc_ref, "Vendor")
        payload = _validated_update(current, data, VendorFields)
        payload["updatedAt"] = now_ms()
        try:
            doc_ref.update(payload)
        except Exception:
            logger.exception("Error updating vendor %s", vendor_id)
            raise

    def delete_vendor(self, vendor_id: str) -> None:
        if not vendor_id:
            raise ValueError("Vendor ID is required to delete a vendor")
        try:
            self.client.collection(VENDORS).document(vendor_id).delete()
        except Exception:
            logger.exception("Error deleting vendor %s", vendor_id)
            raise

    # "Payee" is the name vendors had before; these stay for older callers.
    add_payee = add_vendor
    get_payees = get_vendors
    get_payee_by_id = get_vendor_by_id
    update_payee = update_vendor
    delete_payee = delete_vendor

    # Expenses

    def add_expense(
        self, user_id: str, expense: ExpenseFields | Mapping[str, Any]
    ) -> Expense:
        """Create an expense owned by ``user_id``.

        Raises:
            ValueError: If ``user_id`` is empty
            pydantic.ValidationError: If the expense fields are invalid
        """
        if not user_id:
            raise ValueError("User ID is required to add an expense")

        fields = (
            expense
            if isinstance(expense, ExpenseFields)
            else ExpenseFields.model_validate(expense)
        )
        now = now_ms()
        record = Expense.model_validate(
            {
                **fields.model_dump(),
                "id": "",
                "user_id": user_id,
                "created_at": now,
                "updated_at": now,
                "schema_version": EXPENSE_SCHEMA_VERSION,
            }
        )
        document = record.to_document()
        document.pop("id", None)

        try:
            _, doc_ref = self.client.collection(EXPENSES).add(document)
        except Exception:
            logger.exception("Error adding expense to Firestore")
            raise
        return record.model_copy(update={"id": doc_ref.id})

    def get_expenses(
        self,
        user_id: str,
        expense_filter: ExpenseFilter | Mapping[str, Any] | None = None,
        limit_count: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ExpensePage:
        """Fetch one page of a user's expenses, then filter it in memory.

        The page size caps the fetch before filtering, so a filtered page can
        hold fewer matches than exist overall. The returned cursor is the last
        document fetched, not the last one kept, so the next call resumes
        where the fetch stopped.

        Args:
            user_id: Owner of the expenses
            expense_filter: Optional in-memory filter stages
            limit_count: Maximum number of documents fetched
            cursor: Id of the last document of the previous page

        Returns:
            ExpensePage; empty on an empty ``user_id`` or any remote error
        """
        if not user_id:
            logger.error("get_expenses called with empty user_id")
            return ExpensePage()

        try:
            collection = self.client.collection(EXPENSES)
            query = collection.where(filter=FieldFilter("userId", "==", user_id)).limit(
                limit_count
            )
            if cursor:
                cursor_snapshot = collection.document(cursor).get()
                if cursor_snapshot.exists:
                    query = query.start_after(cursor_snapshot)
                else:
                    logger.warning("Pagination cursor %s no longer exists", cursor)
            snapshots = list(query.stream())
        except Exception:
            logger.exception("Error fetching expenses")
            return ExpensePage()

        logger.debug("Expenses query returned %d documents", len(snapshots))
        expenses = [
            expense
            for expense in (self._expense_from_snapshot(s) for s in snapshots)
            if expense is not None
        ]

        if expense_filter and expenses:
            if not isinstance(expense_filter, ExpenseFilter):
                expense_filter = ExpenseFilter.model_validate(expense_filter)
            expenses = apply_expense_filter(expenses, expense_filter)

        return ExpensePage(
            expenses=expenses, cursor=snapshots[-1].id if snapshots else None
        )

    def get_expense_by_id(self, expense_id: str) -> Expense | None:
        if not expense_id:
            logger.error("get_expense_by_id called with empty expense_id")
            return None
        try:
            snapshot = self.client.collection(EXPENSES).document(expense_id).get()
        except Exception as e:
            logger.error("Error getting expense by ID: %s", e)
            return None
        if not snapshot.exists:
            return None
        return self._expense_from_snapshot(snapshot)

    def update_expense(self, expense_id: str, data: Mapping[str, Any] | BaseModel) -> None:
        """Apply a partial update to an expense.

        Ownership, ids, timestamps and the schema version cannot be changed
        this way; such keys are dropped from ``data``.

        Raises:
            ValueError: If ``expense_id`` is empty or names no expense
            pydantic.ValidationError: If the updated expense would be invalid
        """
        if not expense_id:
            raise ValueError("Expense ID is required to update an expense")
        doc_ref = self.client.collection(EXPENSES).document(expense_id)
        current = migrate_expense_document(self._current_document(doc_ref, "Expense"))
        payload = _validated_update(current, data, ExpenseFields)
        payload["updatedAt"] = now_ms()
        try:
            doc_ref.update(payload)
        except Exception:
            logger.exception("Error updating expense %s", expense_id)
            raise

    def delete_expense(self, expense_id: str) -> None:
        if not expense_id:
            raise ValueError("Expense ID is required to delete an expense")
        try:
            self.client.collection(EXPENSES).document(expense_id).delete()
        except Exception:
            logger.exception("Error deleting expense %s", expense_id)
            raise

    # App settings

    def get_app_settings(
        self, doc_id: str | None = None
    ) -> tuple[str | None, AppSettings | None]:
        """Return ``(document id, settings)`` of the deployment's settings record.

        Looks up ``doc_id`` when given, else takes the first document of the
        collection. Returns ``(None, None)`` when there is none.
        """
        collection = self.client.collection(APP_SETTINGS)
        if doc_id:
            snapshot = collection.document(doc_id).get()
            snapshots = [snapshot] if snapshot.exists else []
        else:
            snapshots = list(collection.limit(1).stream())
        if not snapshots:
            return None, None
        snapshot = snapshots[0]
        return snapshot.id, AppSettings.model_validate(snapshot.to_dict() or {})

    def create_app_settings(self, settings: AppSettings) -> str:
        _, doc_ref = self.client.collection(APP_SETTINGS).add(
            settings.model_dump(by_alias=True)
        )
        return doc_ref.id

    def save_app_settings(self, doc_id: str, settings: AppSettings) -> None:
        self.client.collection(APP_SETTINGS).document(doc_id).set(
            settings.model_dump(by_alias=True)
        )

    # Diagnostics

    def ping(self) -> dict[str, Any]:
        """Read a few documents from ``public_data``, seeding one if it is empty."""
        collection = self.client.collection(PUBLIC_DATA)
        snapshots = list(collection.limit(5).stream())
        if not snapshots:
            collection.add({"message": "Test document", "timestamp": now_ms()})
            return {
                "success": True,
                "message": "No documents found, created a test document",
            }
        return {
            "success": True,
            "message": "Firestore is working correctly",
            "documents": [
                {"id": snapshot.id, **(snapshot.to_dict() or {})} for snapshot in snapshots
            ],
        }

    @staticmethod
    def _vendor_from_snapshot(snapshot) -> Vendor | None:
        data = dict(snapshot.to_dict() or {})
        data["id"] = snapshot.id
        data["createdAt"] = _to_millis(data.get("createdAt"))
        data["updatedAt"] = _to_millis(data.get("updatedAt"))
        try:
            return Vendor.model_validate(data)
        except ValidationError as e:
            logger.warning("Skipping malformed vendor %s: %s", snapshot.id, e)
            return None

    @staticmethod
    def _expense_from_snapshot(snapshot) -> Expense | None:
        data = migrate_expense_document(snapshot.to_dict() or {})
        data["id"] = snapshot.id
        try:
            return Expense.model_validate(data)
        except ValidationError as e:
            logger.warning("Skipping malformed expense %s: %s", snapshot.id, e)
            return None
