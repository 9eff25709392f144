"""Cloud Storage uploads for company logos and receipt files."""

import re
import threading
import time

from google.cloud import storage

from expensedesk.config import ConfigurationError

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(filename: str | None, default: str) -> str:
    name = _UNSAFE_NAME_CHARS.sub("_", filename or "").strip("_")
    return name or default


class StorageClient:
    """Thin wrapper over a single Cloud Storage bucket.

    Attributes:
        bucket_name: Name of the bucket objects are written to
    """

    def __init__(
        self, bucket_name: str | None, client: storage.Client | None = None
    ) -> None:
        self.bucket_name = bucket_name
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> storage.Client:
        """Lazily create and cache the Cloud Storage client."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = storage.Client()
        return self._client

    def upload_file(
        self, content: bytes, path: str, content_type: str | None = None
    ) -> str:
        """Upload bytes to ``path`` in the bucket and return the object's URL.

        Raises:
            ConfigurationError: If no bucket is configured
        """
        if not self.bucket_name:
            raise ConfigurationError(
                "Firebase credentials not configured. Missing: FIREBASE_STORAGE_BUCKET"
            )
        blob = self.client.bucket(self.bucket_name).blob(path)
        blob.upload_from_string(content, content_type=content_type)
        return blob.public_url

    def upload_logo(
        self, content: bytes, filename: str | None, content_type: str | None = None
    ) -> str:
        path = f"logos/{int(time.time() * 1000)}_{_safe_name(filename, 'logo')}"
        return self.upload_file(content, path, content_type)

    def upload_receipt(
        self,
        user_id: str,
        content: bytes,
        filename: str | None,
        content_type: str | None = None,
    ) -> str:
        name = _safe_name(filename, "receipt")
        path = f"receipts/{user_id}/{int(time.time() * 1000)}_{name}"
        return self.upload_file(content, path, content_type)
