"""Unit tests for auth state, settings persistence and service wiring."""

import json
import time
import unittest.mock as mock

import pytest

from expensedesk.config import AppConfig
from expensedesk.integrations.firebase_auth import FirebaseAuthError
from expensedesk.integrations.firestore_db import APP_SETTINGS, FirestoreStore
from expensedesk.models import AppSettings, SimpleUser
from expensedesk.state import AuthState, SettingsStore, build_services
from tests.utils import FakeFirestore

pytestmark = pytest.mark.unit


class TestAuthState:
    @pytest.fixture
    def auth_client(self):
        client = mock.Mock()
        client.sign_in_anonymously.side_effect = [
            SimpleUser(uid=f"anon-{n}", id_token=f"token-{n}") for n in range(1, 4)
        ]
        return client

    def test_wrong_pin_makes_no_remote_call(self, auth_client):
        auth = AuthState(auth_client, "1996")
        assert auth.sign_in_with_pin("0000") is None
        assert auth.sign_in_with_pin(None) is None
        auth_client.sign_in_anonymously.assert_not_called()
        assert auth.user is None

    def test_correct_pin_signs_in_and_notifies(self, auth_client):
        auth = AuthState(auth_client, "1996")
        seen = []
        auth.subscribe(seen.append)

        user = auth.sign_in_with_pin("1996")

        assert user.uid == "anon-1"
        assert auth.user.uid == "anon-1"
        assert [user and user.uid for user in seen] == [None, "anon-1"]

    def test_sign_in_failure_propagates(self, auth_client):
        auth_client.sign_in_anonymously.side_effect = FirebaseAuthError("nope")
        auth = AuthState(auth_client, "1996")
        with pytest.raises(FirebaseAuthError):
            auth.sign_in_with_pin("1996")
        assert auth.user is None

    def test_sign_in_without_token_is_rejected(self, auth_client):
        auth_client.sign_in_anonymously.side_effect = None
        auth_client.sign_in_anonymously.return_value = SimpleUser(uid="anon-1")
        auth = AuthState(auth_client, "1996")
        with pytest.raises(FirebaseAuthError, match="ID token"):
            auth.sign_in()
        assert auth.user is None

    def test_sessions_are_keyed_by_token(self, auth_client):
        auth = AuthState(auth_client, "1996")
        auth.sign_in()
        auth.sign_in()

        assert auth.authenticate("token-1").uid == "anon-1"
        assert auth.authenticate("token-2").uid == "anon-2"
        assert auth.authenticate("forged") is None
        assert auth.authenticate(None) is None

    def test_sign_out_ends_only_that_session(self, auth_client):
        auth = AuthState(auth_client, "1996")
        auth.sign_in()
        auth.sign_in()

        auth.sign_out("token-1")

        assert auth.authenticate("token-1") is None
        assert auth.authenticate("token-2").uid == "anon-2"
        assert auth.user.uid == "anon-2"

        auth.sign_out("token-2")
        assert auth.user is None

    def test_unsubscribe_and_sign_out(self, auth_client):
        auth = AuthState(auth_client, "1996")
        seen = []
        unsubscribe = auth.subscribe(seen.append)
        auth.sign_in()
        unsubscribe()
        auth.sign_out()

        assert auth.user is None
        assert auth.authenticate("token-1") is None
        assert len(seen) == 2

    def test_close_drops_listeners_and_sessions(self, auth_client):
        auth = AuthState(auth_client, "1996")
        seen = []
        auth.subscribe(seen.append)
        auth.sign_in()
        auth.close()
        auth.sign_in()
        assert [user and user.uid for user in seen] == [None, "anon-1"]
        assert auth.authenticate("token-1") is None


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "cache" / "app_settings.json"


def _settings_store(db, cache_path, **kwargs):
    return SettingsStore(FirestoreStore(client=db), cache_path, debounce_seconds=60, **kwargs)


def _remote(db):
    return list(db.collection(APP_SETTINGS).docs.values())


class TestSettingsLoad:
    def test_defaults_created_when_nothing_exists(self, db, cache_path):
        settings = _settings_store(db, cache_path).load()
        assert settings.logo_url is None
        assert _remote(db) == [{"logoUrl": None, "version": 0}]

    def test_remote_wins_and_refreshes_cache(self, db, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text(json.dumps({"logoUrl": "local.png", "version": 1}))
        db.collection(APP_SETTINGS).add({"logoUrl": "remote.png", "version": 3})

        settings = _settings_store(db, cache_path).load()

        assert settings.logo_url == "remote.png"
        assert json.loads(cache_path.read_text())["logoUrl"] == "remote.png"

    def test_remote_seeded_from_cache(self, db, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text(json.dumps({"logoUrl": "local.png", "version": 1}))

        settings = _settings_store(db, cache_path).load()

        assert settings.logo_url == "local.png"
        assert _remote(db) == [{"logoUrl": "local.png", "version": 1}]

    def test_remote_failure_keeps_cached_values(self, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text(json.dumps({"logoUrl": "local.png"}))
        client = mock.Mock()
        client.collection.side_effect = RuntimeError("offline")

        store = SettingsStore(FirestoreStore(client=client), cache_path)

        assert store.load().logo_url == "local.png"
        assert store.loaded is True

    def test_corrupt_cache_ignored(self, db, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text("{not json")
        assert _settings_store(db, cache_path).load().logo_url is None


class TestSettingsWrites:
    def test_set_logo_url_is_debounced(self, db, cache_path):
        store = _settings_store(db, cache_path)
        store.load()

        store.set_logo_url("a.png")
        store.set_logo_url("b.png")

        assert _remote(db)[0]["logoUrl"] is None
        store.flush()
        assert _remote(db) == [{"logoUrl": "b.png", "version": 1}]
        assert json.loads(cache_path.read_text()) == {"logoUrl": "b.png", "version": 1}

    def test_newer_remote_version_wins(self, db, cache_path):
        store = _settings_store(db, cache_path)
        store.load()
        db.collection(APP_SETTINGS).document(store.doc_id).set(
            {"logoUrl": "other-client.png", "version": 5}
        )

        store.set_logo_url("mine.png")
        result = store.flush()

        assert result == AppSettings(logo_url="other-client.png", version=5)
        assert _remote(db) == [{"logoUrl": "other-client.png", "version": 5}]
        assert store.settings.logo_url == "other-client.png"

    def test_flush_without_changes_writes_nothing(self, db, cache_path):
        store = _settings_store(db, cache_path)
        store.load()
        store.flush()
        assert _remote(db) == [{"logoUrl": None, "version": 0}]

    def test_timer_flushes(self, db, cache_path):
        store = SettingsStore(FirestoreStore(client=db), cache_path, debounce_seconds=0.01)
        store.load()
        store.set_logo_url("a.png")

        deadline = time.monotonic() + 5
        while _remote(db)[0]["logoUrl"] != "a.png" and time.monotonic() < deadline:
            time.sleep(0.01)
        assert _remote(db)[0]["logoUrl"] == "a.png"

    def test_close_flushes_pending_change(self, db, cache_path):
        store = _settings_store(db, cache_path)
        store.load()
        store.set_logo_url("a.png")
        store.close()
        assert _remote(db)[0]["logoUrl"] == "a.png"

    def test_upload_logo(self, db, cache_path):
        storage = mock.Mock()
        storage.upload_logo.return_value = "https://storage.example.com/logo.png"
        store = _settings_store(db, cache_path, storage=storage)
        store.load()

        url = store.upload_logo(b"png", "logo.png", "image/png")

        assert url == "https://storage.example.com/logo.png"
        assert store.settings.logo_url == url
        store.close()

    def test_clear_cache(self, db, cache_path):
        store = _settings_store(db, cache_path)
        store.set_logo_url("a.png")
        store.flush()
        store.clear_cache()
        assert not cache_path.exists()


def test_build_services_is_lazy(tmp_path):
    config = AppConfig(settings_cache_path=tmp_path / "settings.json")
    with (
        mock.patch("expensedesk.integrations.firestore_db.firestore.Client") as firestore_cls,
        mock.patch("expensedesk.integrations.storage.storage.Client") as storage_cls,
    ):
        services = build_services(config)
        firestore_cls.assert_not_called()
        storage_cls.assert_not_called()

    assert services.auth.user is None
    assert services.settings.loaded is False
    assert services.receipts.veryfi is services.veryfi
    assert services.speech.state == "disconnected"
