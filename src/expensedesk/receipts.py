"""Receipt upload pipeline: validate, OCR, normalize, assess.

A receipt without a usable total is a hard failure. Missing vendor, date or
line items only produce warnings; the pre-filled expense stays editable.
"""

import logging
from collections.abc import Callable

from expensedesk.integrations.storage import StorageClient
from expensedesk.integrations.veryfi import VeryfiApiError, VeryfiClient
from expensedesk.models import ReceiptData, ReceiptProcessingResult
from expensedesk.utils.expense_utils import convert_receipt_to_expense
from expensedesk.utils.receipt_utils import (
    collect_receipt_warnings,
    normalize_receipt,
    validate_upload,
)

logger = logging.getLogger(__name__)

MESSAGE_SUCCESS = "Receipt processed successfully!"
MESSAGE_WITH_WARNINGS = (
    "Receipt processed with some missing information. "
    "Please review and complete the form."
)

# (message, details) shown for each VeryfiApiError category.
_VERYFI_ERROR_TEXT = {
    "bad_format": (
        "Invalid request to the OCR service",
        "The image format may not be supported or the request was malformed. "
        "Try a different image format (JPEG or PNG recommended).",
    ),
    "bad_credentials": (
        "Authentication error with the OCR service",
        "There may be an issue with the API credentials. Please contact support.",
    ),
    "rate_limited": (
        "Too many requests to the OCR service",
        "The API rate limit has been exceeded. Please try again later.",
    ),
    "vendor_outage": (
        "The OCR service is currently unavailable",
        "There is an issue with the Veryfi API. Please try again later "
        "or contact support if the problem persists.",
    ),
}


class ReceiptProcessingError(Exception):
    """Raised when a receipt was read but cannot become an expense."""

    def __init__(self, message: str, details: str | None = None, status_code: int = 422):
        super().__init__(message)
        self.message = message
        self.details = details
        self.status_code = status_code


def describe_receipt_error(error: VeryfiApiError) -> tuple[str, str]:
    """User-facing ``(message, details)`` for an OCR vendor failure."""
    return _VERYFI_ERROR_TEXT.get(
        error.category,
        (
            "Failed to process receipt",
            str(error) or "An unexpected error occurred. "
            "Please try again or use a different image.",
        ),
    )


def assess_receipt(receipt: ReceiptData, raw: dict) -> list[str]:
    """Return warnings for a normalized receipt.

    Raises:
        ReceiptProcessingError: If the total is missing or zero
    """
    if not receipt.total:
        raise ReceiptProcessingError(
            "Could not extract total amount from receipt",
            "The system could not identify the total amount on your receipt. "
            "Please ensure the total is clearly visible or enter the expense "
            "details manually.",
        )
    return collect_receipt_warnings(raw, receipt)


class ReceiptProcessor:
    """Turns an uploaded receipt file into a pre-filled expense.

    Attributes:
        veryfi: OCR client
        storage: Optional storage used to keep a copy of mobile uploads
    """

    def __init__(self, veryfi: VeryfiClient, storage: StorageClient | None = None):
        self.veryfi = veryfi
        self.storage = storage

    def process(
        self,
        content: bytes,
        filename: str | None,
        content_type: str | None,
        user_id: str | None = None,
        vendor_id: str | None = None,
        on_progress: Callable[[str, str], None] | None = None,
    ) -> ReceiptProcessingResult:
        """Run one upload through the pipeline.

        Args:
            content: Raw file bytes
            filename: Original file name
            content_type: MIME type reported by the client
            user_id: Owner when uploaded from a signed-in or mobile session
            vendor_id: Vendor to attach to the pre-filled expense
            on_progress: Optional callback for progress updates (event_type, message)

        Returns:
            ReceiptProcessingResult with the receipt, expense and warnings

        Raises:
            UploadValidationError: If the file type or size is rejected
            VeryfiApiError: If the OCR vendor fails
            IncompleteReceiptError: If the OCR response lacks an id or total
            ReceiptProcessingError: If the total is zero
        """
        validate_upload(content_type, len(content))

        if on_progress:
            on_progress("ocr_start", f"Sending {filename or 'receipt'} to Veryfi")
        raw = self.veryfi.process_document(content, filename, content_type)

        receipt = normalize_receipt(raw, user_id=user_id, content_type=content_type)
        warnings = assess_receipt(receipt, raw)

        if self.storage and user_id and not receipt.receipt_url:
            try:
                receipt.receipt_url = self.storage.upload_receipt(
                    user_id, content, filename, content_type
                )
            except Exception as e:
                logger.error("Failed to store receipt file for %s: %s", user_id, e)

        for warning in warnings:
            logger.info("Receipt %s: %s", receipt.id, warning)
            if on_progress:
                on_progress("receipt_warning", warning)

        result = ReceiptProcessingResult(
            receipt=receipt,
            expense=convert_receipt_to_expense(receipt, vendor_id=vendor_id),
            warnings=warnings,
            message=MESSAGE_WITH_WARNINGS if warnings else MESSAGE_SUCCESS,
        )
        if on_progress:
            on_progress("ocr_success", result.message)
        return result
