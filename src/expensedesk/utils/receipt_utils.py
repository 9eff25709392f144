"""Upload validation and shaping of OCR vendor responses."""

from datetime import date
from typing import Any

from expensedesk.models import ReceiptData, ReceiptLineItem, ReceiptVendor

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
UNKNOWN_VENDOR = "Unknown Vendor"

WARNING_NO_VENDOR = "Vendor name could not be detected. Please enter it manually."
WARNING_NO_DATE = (
    "Receipt date could not be detected. Today's date has been used as default."
)
WARNING_NO_ITEMS = (
    "Line items could not be detected. You may need to enter them manually."
)


class UploadValidationError(ValueError):
    """Raised when a file is rejected before it is sent anywhere."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class IncompleteReceiptError(ValueError):
    """Raised when the OCR response lacks an id or a total."""


def is_pdf(content_type: str | None) -> bool:
    return content_type == "application/pdf"


def validate_upload(content_type: str | None, size: int) -> None:
    """Accept images and PDFs up to 10 MB.

    Raises:
        UploadValidationError: If the type or size is not acceptable
    """
    content_type = content_type or ""
    if not content_type.startswith("image/") and not is_pdf(content_type):
        raise UploadValidationError(
            "Please upload an image or PDF file (JPEG, PNG, PDF, etc.)"
        )
    if size > MAX_UPLOAD_BYTES:
        raise UploadValidationError(
            "File size exceeds 10MB limit", "Please upload a smaller file."
        )


def generate_receipt_description(data: dict[str, Any]) -> str:
    """Short human-readable summary built from the priciest line items.

    Examples: ``Receipt from Cafe``, ``Cafe: Latte``, ``Cafe: Latte and Bagel``,
    ``Cafe: Latte, Bagel, and 3 more items``.
    """
    vendor_name = (data.get("vendor") or {}).get("name") or UNKNOWN_VENDOR
    line_items = data.get("line_items") or []
    if not line_items:
        return f"Receipt from {vendor_name}"

    ranked = sorted(line_items, key=lambda item: item.get("total") or 0, reverse=True)
    top = [item.get("description") for item in ranked[:3]]
    top = [description for description in top if description]

    if not top:
        return f"Receipt from {vendor_name}"
    if len(top) == 1:
        return f"{vendor_name}: {top[0]}"
    if len(top) == 2:
        return f"{vendor_name}: {top[0]} and {top[1]}"
    return f"{vendor_name}: {top[0]}, {top[1]}, and {len(line_items) - 2} more items"


def normalize_receipt(
    data: dict[str, Any],
    user_id: str | None = None,
    content_type: str | None = None,
) -> ReceiptData:
    """Map a raw OCR vendor document onto :class:`ReceiptData`.

    Missing vendor name, date and item descriptions get defaults; notes fall
    back to :func:`generate_receipt_description`.

    Raises:
        IncompleteReceiptError: If the response has no ``id`` or no ``total``
    """
    if not data.get("id") or data.get("total") is None:
        raise IncompleteReceiptError("The OCR service returned incomplete data")

    vendor = data.get("vendor") or {}
    total = data.get("total")
    items = [
        ReceiptLineItem(
            description=item.get("description") or "Item",
            quantity=item.get("quantity"),
            unit_price=item.get("unit_price"),
            total=item.get("total"),
        )
        for item in data.get("line_items") or []
    ]

    file_type = None
    if content_type:
        file_type = "pdf" if is_pdf(content_type) else "image"

    return ReceiptData(
        id=str(data["id"]),
        user_id=user_id or None,
        vendor=ReceiptVendor(
            name=vendor.get("name") or UNKNOWN_VENDOR,
            address=vendor.get("address") or "",
            phone_number=vendor.get("phone_number"),
        ),
        date=data.get("date") or date.today().isoformat(),
        total=total if isinstance(total, int | float) else 0,
        subtotal=data.get("subtotal"),
        tax=data.get("tax"),
        tip=data.get("tip"),
        currency=data.get("currency_code") or "USD",
        payment_method=(data.get("payment") or {}).get("type"),
        items=items,
        category=data.get("category"),
        notes=data.get("notes") or generate_receipt_description(data),
        ocr_text=data.get("ocr_text"),
        receipt_url=data.get("thumbnail")
        or data.get("img_url")
        or data.get("img_thumbnail_url"),
        file_type=file_type,
        source="mobile" if user_id else "web",
    )


def collect_receipt_warnings(raw: dict[str, Any], receipt: ReceiptData) -> list[str]:
    """Non-blocking warnings for fields the OCR vendor could not read."""
    warnings = []
    if receipt.vendor.name == UNKNOWN_VENDOR:
        warnings.append(WARNING_NO_VENDOR)
    if not raw.get("date"):
        warnings.append(WARNING_NO_DATE)
    if not receipt.items:
        warnings.append(WARNING_NO_ITEMS)
    return warnings
