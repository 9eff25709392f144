"""Veryfi receipt OCR client.

Documents are uploaded as multipart form data. Credentials travel in the
``Client-Id`` and ``Authorization: apikey <username>:<api_key>`` headers and
are never logged.
"""

import logging
import time
from typing import Any

import requests

from expensedesk.config import VeryfiConfig

logger = logging.getLogger(__name__)

VERYFI_CATEGORIES_URL = "https://api.veryfi.com/api/v8/categories/"


class VeryfiApiError(Exception):
    """Raised when the Veryfi API answers with a non-2xx status."""

    def __init__(self, status: int, response_text: str) -> None:
        super().__init__(f"Veryfi API error: {status} {response_text}")
        self.status = status
        self.response_text = response_text

    @property
    def category(self) -> str:
        """Coarse failure class used to pick the message shown to the user."""
        if self.status == 400:
            return "bad_format"
        if self.status == 401:
            return "bad_credentials"
        if self.status == 429:
            return "rate_limited"
        if self.status >= 500:
            return "vendor_outage"
        return "failed"


class VeryfiClient:
    """Client for the Veryfi document processing API.

    Attributes:
        config: Veryfi credentials and endpoint
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        config: VeryfiConfig,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Lazily create and cache the HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict[str, str]:
        config = self.config.require()
        return {
            "Accept": "application/json",
            "Client-Id": config.client_id or "",
            "Authorization": f"apikey {config.username}:{config.api_key}",
        }

    def process_document(
        self, content: bytes, filename: str | None, content_type: str | None
    ) -> dict[str, Any]:
        """Submit a receipt image or PDF for extraction.

        Args:
            content: Raw file bytes
            filename: Original file name, if known
            content_type: MIME type of the file

        Returns:
            The Veryfi document as parsed JSON

        Raises:
            ConfigurationError: If required credentials are missing
            VeryfiApiError: If Veryfi responds with a non-2xx status
            requests.RequestException: On network failures
        """
        headers = self._headers()
        form = {
            "auto_delete": "false",
            "boost_mode": "1",
            "external_id": f"receipt_{int(time.time() * 1000)}",
        }
        if content_type == "application/pdf":
            form["file_name"] = filename or "receipt.pdf"
            form["document_type"] = "receipt"

        files = {"file": (filename or "receipt", content, content_type)}
        logger.info(
            "Sending %s (%s, %d bytes) to Veryfi",
            filename or "receipt",
            content_type,
            len(content),
        )
        response = self.session.post(
            self.config.url,
            headers=headers,
            data=form,
            files=files,
            timeout=self.timeout,
        )
        if not response.ok:
            logger.error("Veryfi API error: %s %s", response.status_code, response.text)
            raise VeryfiApiError(response.status_code, response.text)

        document = response.json()
        logger.info("Veryfi API response received with ID: %s", document.get("id"))
        return document

    def list_categories(self) -> Any:
        """Fetch the account's categories; a cheap way to check credentials."""
        response = self.session.get(
            VERYFI_CATEGORIES_URL, headers=self._headers(), timeout=self.timeout
        )
        if not response.ok:
            raise VeryfiApiError(response.status_code, response.text)
        return response.json()
