"""Data models for expenses, vendors, receipts and store analytics."""

from datetime import date as calendar_date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Bumped whenever the stored expense document shape changes.
EXPENSE_SCHEMA_VERSION = 1

RecurringFrequency = Literal[
    "daily", "weekly", "bi-weekly", "monthly", "quarterly", "annually"
]
ExpenseType = Literal["expense", "cogs"]


class CamelModel(BaseModel):
    """Base for records stored in Firestore and served as JSON.

    Attributes are snake_case in Python and camelCase on the wire, matching
    the documents already in the database.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored camelCase shape, omitting unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ExpenseItem(CamelModel):
    """Single line on an expense."""

    description: str = ""
    quantity: float | None = None
    unit_price: float | None = None
    total: float | None = None


class ExpenseFields(CamelModel):
    """The user-editable part of an expense."""

    vendor_id: str = ""
    vendor_name: str = ""
    date: str  # YYYY-MM-DD
    amount: float = Field(ge=0)
    currency: str = "USD"
    category: str = ""
    subcategory: str | None = None
    payment_method: str | None = None
    receipt_url: str | None = None
    notes: str | None = None
    items: list[ExpenseItem] = Field(default_factory=list)
    tax: float | None = None
    is_recurring: bool | None = None
    recurring_frequency: RecurringFrequency | None = None
    tags: list[str] | None = None
    type: ExpenseType | None = None

    @field_validator("date")
    @classmethod
    def _date_must_parse(cls, value: str) -> str:
        # Full ISO timestamps are tolerated; only the calendar part matters.
        calendar_date.fromisoformat(value[:10])
        return value


class Expense(ExpenseFields):
    """Expense as stored, with identity and timestamps."""

    id: str = ""
    user_id: str | None = None
    created_at: int = 0  # epoch milliseconds
    updated_at: int = 0
    schema_version: int = EXPENSE_SCHEMA_VERSION


class VendorFields(CamelModel):
    """The user-editable part of a vendor."""

    name: str = Field(min_length=1)
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    category: str | None = None
    notes: str | None = None


class Vendor(VendorFields):
    id: str = ""
    user_id: str | None = None
    created_at: int = 0
    updated_at: int = 0


# Deprecated name kept for older callers.
Payee = Vendor


class ExpenseFilter(CamelModel):
    """In-memory filters applied after the per-user fetch."""

    start_date: str | None = None
    end_date: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    categories: list[str] | None = None
    vendor_ids: list[str] | None = None
    search_term: str | None = None
    tags: list[str] | None = None


class ExpensePage(CamelModel):
    expenses: list[Expense] = Field(default_factory=list)
    cursor: str | None = None


class ExpenseSummary(CamelModel):
    total_expenses: float = 0.0
    category_breakdown: dict[str, float] = Field(default_factory=dict)
    vendor_breakdown: dict[str, float] = Field(default_factory=dict)
    monthly_totals: dict[str, float] = Field(default_factory=dict)


class ExpenseTypeTotals(CamelModel):
    """Dashboard figures with COGS kept apart from regular expenses."""

    expenses_this_month: float = 0.0
    expenses_last_three_months: float = 0.0
    cogs_this_month: float = 0.0
    cogs_last_three_months: float = 0.0
    net_this_month: float | None = None


class ReceiptVendor(BaseModel):
    name: str = "Unknown Vendor"
    address: str = ""
    phone_number: str | None = None


class ReceiptLineItem(BaseModel):
    description: str = "Item"
    quantity: float | None = None
    unit_price: float | None = None
    total: float | None = None


class ReceiptData(BaseModel):
    """Receipt fields extracted by the OCR vendor, shaped for the expense form."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str | None = Field(None, alias="userId")
    vendor: ReceiptVendor = Field(default_factory=ReceiptVendor)
    date: str
    total: float = 0.0
    subtotal: float | None = None
    tax: float | None = None
    tip: float | None = None
    currency: str = "USD"
    payment_method: str | None = None
    items: list[ReceiptLineItem] = Field(default_factory=list)
    category: str | None = None
    notes: str | None = None
    ocr_text: str | None = None
    receipt_url: str | None = None
    file_type: Literal["pdf", "image"] | None = None
    source: Literal["mobile", "web"] = "web"


class ReceiptProcessingResult(BaseModel):
    """Outcome of a receipt upload that produced a usable total."""

    receipt: ReceiptData
    expense: ExpenseFields
    warnings: list[str] = Field(default_factory=list)
    message: str = "Receipt processed successfully!"


class AppSettings(CamelModel):
    logo_url: str | None = None
    version: int = 0


class SimpleUser(CamelModel):
    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None
    id_token: str | None = Field(None, exclude=True)
    refresh_token: str | None = Field(None, exclude=True)


# Shopify mirrors. Unknown fields are kept so API responses pass through intact.


class ShopifyModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class ShopifyLineItem(ShopifyModel):
    id: int | None = None
    variant_id: int | None = None
    title: str = ""
    quantity: int = 0
    sku: str | None = None
    variant_title: str | None = None
    vendor: str | None = None
    price: str = "0"
    name: str | None = None


class ShopifyCustomer(ShopifyModel):
    id: int | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class ShopifyOrder(ShopifyModel):
    id: int
    name: str = ""
    email: str | None = None
    created_at: str
    processed_at: str | None = None
    updated_at: str | None = None
    total_price: str = "0"
    subtotal_price: str | None = None
    total_tax: str | None = None
    currency: str | None = None
    financial_status: str | None = None
    total_discounts: str | None = None
    total_line_items_price: str | None = None
    customer: ShopifyCustomer | None = None
    line_items: list[ShopifyLineItem] = Field(default_factory=list)


class ShopifyProductVariant(ShopifyModel):
    id: int | None = None
    product_id: int | None = None
    title: str = ""
    price: str = "0"
    sku: str | None = None
    position: int | None = None
    inventory_policy: str | None = None
    compare_at_price: str | None = None
    inventory_quantity: int | None = 0
    inventory_management: str | None = None


class ShopifyProductImage(ShopifyModel):
    id: int | None = None
    product_id: int | None = None
    position: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    src: str
    variant_ids: list[int] = Field(default_factory=list)


class ShopifyProduct(ShopifyModel):
    id: int
    title: str = ""
    body_html: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    created_at: str | None = None
    handle: str | None = None
    updated_at: str | None = None
    published_at: str | None = None
    status: str | None = None
    tags: str | None = None
    variants: list[ShopifyProductVariant] = Field(default_factory=list)
    images: list[ShopifyProductImage] = Field(default_factory=list)


class OrderPage(CamelModel):
    orders: list[ShopifyOrder] = Field(default_factory=list)
    next_cursor: str | None = None
    original_params: dict[str, str | None] = Field(default_factory=dict)


class ProductPage(CamelModel):
    products: list[ShopifyProduct] = Field(default_factory=list)
    next_cursor: str | None = None
    original_params: dict[str, str | None] = Field(default_factory=dict)


class InventoryItem(CamelModel):
    id: str
    name: str
    category: str
    price: float
    stock: int
    description: str | None = None
    image_url: str | None = None


class TopProduct(CamelModel):
    title: str
    revenue: float
    quantity: int


class DailyRevenue(CamelModel):
    date: str
    revenue: float
    orders: int


class RevenueSummary(CamelModel):
    total_revenue: float = 0.0
    total_orders: int = 0
    average_order_value: float = 0.0
    total_products: int = 0
    top_products: list[TopProduct] = Field(default_factory=list)
    revenue_by_day: list[DailyRevenue] = Field(default_factory=list)


class OrderData(CamelModel):
    """One row of a Shopify orders export."""

    date: str
    order_id: str = ""
    total_price: float = 0.0
    raw: dict[str, str] = Field(default_factory=dict)


class SessionData(CamelModel):
    """One row of a Shopify sessions report."""

    date: str
    sessions: int = 0
    raw: dict[str, str] = Field(default_factory=dict)


class CorrelationData(CamelModel):
    date: str
    revenue: float
    sessions: int
    conversion_rate: float
    average_order_value: float


class AnalysisResult(CamelModel):
    correlation_data: list[CorrelationData] = Field(default_factory=list)
    pearson_correlation: float = 0.0
    total_revenue: float = 0.0
    total_orders: int = 0
    total_sessions: int = 0
    average_conversion_rate: float = 0.0
    average_order_value: float = 0.0
