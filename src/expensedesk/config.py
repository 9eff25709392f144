"""Environment-driven configuration for each remote collaborator.

Values come from the process environment, optionally seeded from a ``.env``
file. Nothing here fails at import time: a collaborator with missing settings
only fails when it is actually used, through :meth:`EnvConfig.require`.
"""

import os
from pathlib import Path
from typing import ClassVar

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_VERYFI_URL = "https://api.veryfi.com/api/v8/partner/documents"
DEFAULT_SHOPIFY_API_VERSION = "2023-01"
DEFAULT_SIGNIN_PIN = "1996"
DEFAULT_SETTINGS_CACHE = Path.home() / ".expensedesk" / "app_settings.json"


class ConfigurationError(RuntimeError):
    """Raised when a collaborator is used without its required settings."""


class EnvConfig(BaseModel):
    """Base for a group of settings read from environment variables.

    Subclasses map field names to environment variable names in ``ENV`` and
    list the fields they cannot work without in ``REQUIRED``.
    """

    LABEL: ClassVar[str] = "Service"
    ENV: ClassVar[dict[str, str]] = {}
    REQUIRED: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_env(cls):
        values = {
            field: os.getenv(env_name)
            for field, env_name in cls.ENV.items()
            if os.getenv(env_name)
        }
        return cls(**values)

    def missing(self, *fields: str) -> list[str]:
        """Environment variable names that are unset for ``fields``.

        Args:
            fields: Field names to check (default: the ``REQUIRED`` set)

        Returns:
            Names of the missing environment variables, in declaration order
        """
        wanted = fields or self.REQUIRED
        return [self.ENV[field] for field in wanted if not getattr(self, field)]

    def require(self, *fields: str):
        """Return self, or raise ConfigurationError naming what is missing."""
        missing = self.missing(*fields)
        if missing:
            raise ConfigurationError(
                f"{self.LABEL} credentials not configured. "
                f"Missing: {', '.join(missing)}"
            )
        return self


class VeryfiConfig(EnvConfig):
    LABEL: ClassVar[str] = "Veryfi API"
    ENV: ClassVar[dict[str, str]] = {
        "client_id": "VERYFI_CLIENT_ID",
        "client_secret": "VERYFI_CLIENT_SECRET",
        "username": "VERYFI_USERNAME",
        "api_key": "VERYFI_API_KEY",
        "url": "VERYFI_URL",
    }
    REQUIRED: ClassVar[tuple[str, ...]] = ("client_id", "username", "api_key")

    client_id: str | None = None
    client_secret: str | None = None
    username: str | None = None
    api_key: str | None = None
    url: str = DEFAULT_VERYFI_URL


class ShopifyConfig(EnvConfig):
    LABEL: ClassVar[str] = "Shopify API"
    ENV: ClassVar[dict[str, str]] = {
        "store_url": "SHOPIFY_STORE_URL",
        "access_token": "SHOPIFY_ACCESS_TOKEN",
        "api_version": "SHOPIFY_API_VERSION",
    }
    REQUIRED: ClassVar[tuple[str, ...]] = ("store_url", "access_token")

    store_url: str | None = None
    access_token: str | None = None
    api_version: str = DEFAULT_SHOPIFY_API_VERSION

    @property
    def admin_base_url(self) -> str:
        """Admin REST base, e.g. ``https://shop.myshopify.com/admin/api/2023-01``."""
        store = (self.store_url or "").rstrip("/")
        if store and not store.startswith("http"):
            store = f"https://{store}"
        return f"{store}/admin/api/{self.api_version}"


class FirebaseConfig(EnvConfig):
    LABEL: ClassVar[str] = "Firebase"
    ENV: ClassVar[dict[str, str]] = {
        "api_key": "FIREBASE_API_KEY",
        "project_id": "FIREBASE_PROJECT_ID",
        "storage_bucket": "FIREBASE_STORAGE_BUCKET",
    }
    REQUIRED: ClassVar[tuple[str, ...]] = ("project_id",)

    api_key: str | None = None
    project_id: str | None = None
    storage_bucket: str | None = None


class DeepgramConfig(EnvConfig):
    LABEL: ClassVar[str] = "Deepgram API"
    ENV: ClassVar[dict[str, str]] = {"api_key": "DEEPGRAM_API_KEY"}
    REQUIRED: ClassVar[tuple[str, ...]] = ("api_key",)

    api_key: str | None = None


class AppConfig(BaseModel):
    """Top-level configuration handed to :func:`expensedesk.state.build_services`."""

    signin_pin: str = DEFAULT_SIGNIN_PIN
    settings_cache_path: Path = DEFAULT_SETTINGS_CACHE
    http_timeout: float = 30.0
    veryfi: VeryfiConfig = Field(default_factory=VeryfiConfig)
    shopify: ShopifyConfig = Field(default_factory=ShopifyConfig)
    firebase: FirebaseConfig = Field(default_factory=FirebaseConfig)
    deepgram: DeepgramConfig = Field(default_factory=DeepgramConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "AppConfig":
        """Build configuration from the environment.

        Args:
            env_file: Optional ``.env`` path. When None, python-dotenv searches
                upward from the working directory.

        Returns:
            AppConfig populated from environment variables
        """
        load_dotenv(env_file)
        cache_path = os.getenv("EXPENSEDESK_SETTINGS_CACHE")
        raw_timeout = os.getenv("EXPENSEDESK_HTTP_TIMEOUT", "30")
        try:
            http_timeout = float(raw_timeout)
        except ValueError as e:
            raise ConfigurationError(
                f"EXPENSEDESK_HTTP_TIMEOUT must be a number of seconds, got {raw_timeout!r}"
            ) from e
        return cls(
            signin_pin=os.getenv("EXPENSEDESK_PIN", DEFAULT_SIGNIN_PIN),
            settings_cache_path=Path(cache_path) if cache_path else DEFAULT_SETTINGS_CACHE,
            http_timeout=http_timeout,
            veryfi=VeryfiConfig.from_env(),
            shopify=ShopifyConfig.from_env(),
            firebase=FirebaseConfig.from_env(),
            deepgram=DeepgramConfig.from_env(),
        )
