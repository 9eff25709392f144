"""Unit tests for environment-driven configuration."""

import pytest

from expensedesk.config import (
    DEFAULT_SIGNIN_PIN,
    DEFAULT_VERYFI_URL,
    AppConfig,
    ConfigurationError,
    DeepgramConfig,
    ShopifyConfig,
    VeryfiConfig,
)

pytestmark = pytest.mark.unit

VERYFI_VARS = [
    "VERYFI_CLIENT_ID",
    "VERYFI_CLIENT_SECRET",
    "VERYFI_USERNAME",
    "VERYFI_API_KEY",
    "VERYFI_URL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in VERYFI_VARS + [
        "SHOPIFY_STORE_URL",
        "SHOPIFY_ACCESS_TOKEN",
        "SHOPIFY_API_VERSION",
        "EXPENSEDESK_PIN",
        "EXPENSEDESK_SETTINGS_CACHE",
        "EXPENSEDESK_HTTP_TIMEOUT",
        "DEEPGRAM_API_KEY",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_veryfi_config_from_env(clean_env):
    clean_env.setenv("VERYFI_CLIENT_ID", "cid")
    clean_env.setenv("VERYFI_USERNAME", "user")
    clean_env.setenv("VERYFI_API_KEY", "key")

    config = VeryfiConfig.from_env()

    assert config.client_id == "cid"
    assert config.url == DEFAULT_VERYFI_URL
    assert config.missing() == []
    assert config.require() is config


def test_missing_lists_env_var_names_in_order(clean_env):
    config = VeryfiConfig.from_env()
    assert config.missing() == ["VERYFI_CLIENT_ID", "VERYFI_USERNAME", "VERYFI_API_KEY"]
    assert config.missing("client_secret") == ["VERYFI_CLIENT_SECRET"]


def test_require_names_missing_variables(clean_env):
    clean_env.setenv("VERYFI_CLIENT_ID", "cid")
    with pytest.raises(ConfigurationError, match="Missing: VERYFI_USERNAME, VERYFI_API_KEY"):
        VeryfiConfig.from_env().require()


def test_empty_values_count_as_missing(clean_env):
    clean_env.setenv("DEEPGRAM_API_KEY", "")
    assert DeepgramConfig.from_env().missing() == ["DEEPGRAM_API_KEY"]


@pytest.mark.parametrize(
    ("store_url", "expected"),
    [
        ("shop.myshopify.com", "https://shop.myshopify.com/admin/api/2023-01"),
        ("https://shop.myshopify.com/", "https://shop.myshopify.com/admin/api/2023-01"),
    ],
)
def test_shopify_admin_base_url(store_url, expected):
    assert ShopifyConfig(store_url=store_url).admin_base_url == expected


def test_app_config_from_env(clean_env, tmp_path):
    clean_env.setenv("EXPENSEDESK_PIN", "4321")
    clean_env.setenv("EXPENSEDESK_SETTINGS_CACHE", str(tmp_path / "settings.json"))
    clean_env.setenv("EXPENSEDESK_HTTP_TIMEOUT", "5")
    clean_env.setenv("SHOPIFY_STORE_URL", "shop.myshopify.com")

    config = AppConfig.from_env(env_file=tmp_path / "missing.env")

    assert config.signin_pin == "4321"
    assert config.settings_cache_path == tmp_path / "settings.json"
    assert config.http_timeout == 5.0
    assert config.shopify.store_url == "shop.myshopify.com"


def test_app_config_defaults(clean_env, tmp_path):
    config = AppConfig.from_env(env_file=tmp_path / "missing.env")
    assert config.signin_pin == DEFAULT_SIGNIN_PIN
    assert config.http_timeout == 30.0


def test_invalid_http_timeout_names_variable(clean_env, tmp_path):
    clean_env.setenv("EXPENSEDESK_HTTP_TIMEOUT", "thirty")
    with pytest.raises(ConfigurationError, match="EXPENSEDESK_HTTP_TIMEOUT"):
        AppConfig.from_env(env_file=tmp_path / "missing.env")
