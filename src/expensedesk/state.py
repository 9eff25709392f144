"""Process-wide application state: signed-in user, app settings, speech.

:func:`build_services` wires everything in a fixed order and
:meth:`AppServices.close` tears it down in reverse.
"""

import hmac
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from expensedesk.config import AppConfig
from expensedesk.integrations.deepgram import SpeechSession
from expensedesk.integrations.firebase_auth import FirebaseAuthClient, FirebaseAuthError
from expensedesk.integrations.firestore_db import FirestoreStore
from expensedesk.integrations.shopify import ShopifyClient
from expensedesk.integrations.storage import StorageClient
from expensedesk.integrations.veryfi import VeryfiClient
from expensedesk.models import AppSettings, SimpleUser
from expensedesk.receipts import ReceiptProcessor

logger = logging.getLogger(__name__)

SETTINGS_DEBOUNCE_SECONDS = 0.5

AuthListener = Callable[[SimpleUser | None], None]


class AuthState:
    """Auth sessions with change listeners.

    Signing in is a PIN check followed by an anonymous Firebase sign-up. Each
    sign-in opens a session keyed by the Firebase ID token it returned; HTTP
    requests name their session with that token. :attr:`user` mirrors the
    most recent sign-in for local callers such as the CLI.

    Sessions live in this process only; a restart requires signing in again.
    """

    def __init__(self, client: FirebaseAuthClient, pin: str) -> None:
        self.client = client
        self._pin = pin
        self._user: SimpleUser | None = None
        self._sessions: dict[str, SimpleUser] = {}
        self._listeners: list[AuthListener] = []
        self._lock = threading.Lock()

    @property
    def user(self) -> SimpleUser | None:
        return self._user

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register ``listener`` and call it once with the current user.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)
        listener(self._user)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set_user(self, user: SimpleUser | None) -> None:
        with self._lock:
            self._user = user
            listeners = list(self._listeners)
        for listener in listeners:
            listener(user)

    def check_pin(self, pin: str | None) -> bool:
        return hmac.compare_digest((pin or "").encode(), self._pin.encode())

    def sign_in(self) -> SimpleUser:
        """Open a new anonymous session.

        Raises:
            FirebaseAuthError: If the sign-up fails or returns no ID token
        """
        user = self.client.sign_in_anonymously()
        if not user.id_token:
            raise FirebaseAuthError("Sign-in response did not include an ID token")
        with self._lock:
            self._sessions[user.id_token] = user
        logger.info("Signed in anonymously as %s", user.uid)
        self._set_user(user)
        return user

    def sign_in_with_pin(self, pin: str | None) -> SimpleUser | None:
        """Sign in when ``pin`` matches the configured PIN.

        Returns:
            None on a wrong PIN, else the signed-in user

        Raises:
            FirebaseAuthError: If the anonymous sign-up fails
        """
        if not self.check_pin(pin):
            logger.warning("Sign-in rejected: wrong PIN")
            return None
        return self.sign_in()

    def authenticate(self, id_token: str | None) -> SimpleUser | None:
        """Return the user whose session ``id_token`` names, if any."""
        if not id_token:
            return None
        with self._lock:
            return self._sessions.get(id_token)

    def sign_out(self, id_token: str | None = None) -> None:
        """End the session of ``id_token``, or every session when it is None."""
        with self._lock:
            if id_token is None:
                ended = list(self._sessions.values())
                self._sessions.clear()
            else:
                session = self._sessions.pop(id_token, None)
                ended = [session] if session is not None else []
            current = self._user
        for user in ended:
            logger.info("Signing out %s", user.uid)
        if id_token is None or (current is not None and current.id_token == id_token):
            self._set_user(None)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            self._sessions.clear()


class SettingsStore:
    """App settings mirrored between a local JSON cache and Firestore.

    Changes are written through after a short debounce. Each remote write
    carries a version number; a remote copy with a higher version than the
    local one wins and the pending local change is dropped.
    """

    def __init__(
        self,
        store: FirestoreStore,
        cache_path: Path,
        storage: StorageClient | None = None,
        debounce_seconds: float = SETTINGS_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self.storage = storage
        self.cache_path = Path(cache_path)
        self.debounce_seconds = debounce_seconds
        self.doc_id: str | None = None
        self.loaded = False
        self._settings = AppSettings()
        self._lock = threading.RLock()
        self._timer: threading.Timer | None = None
        self._dirty = False

    @property
    def settings(self) -> AppSettings:
        with self._lock:
            return self._settings.model_copy()

    def _read_cache(self) -> AppSettings | None:
        if not self.cache_path.exists():
            return None
        try:
            return AppSettings.model_validate_json(self.cache_path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable settings cache %s: %s", self.cache_path, e)
            return None

    def _write_cache(self, settings: AppSettings) -> None:
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(settings.model_dump(by_alias=True)))
        except OSError as e:
            logger.error("Error writing settings cache %s: %s", self.cache_path, e)

    def load(self) -> AppSettings:
        """Paint from the local cache, then reconcile with Firestore.

        The remote document wins when it exists. Otherwise the remote is
        seeded from the cache, or with defaults when there is no cache.
        Remote failures are logged and leave the cached values in place.
        """
        with self._lock:
            cached = self._read_cache()
            if cached is not None:
                self._settings = cached

            try:
                doc_id, remote = self.store.get_app_settings(self.doc_id)
                if remote is not None:
                    self.doc_id = doc_id
                    self._settings = remote
                    self._write_cache(remote)
                elif cached is not None:
                    self.doc_id = self.store.create_app_settings(cached)
                else:
                    self.doc_id = self.store.create_app_settings(self._settings)
            except Exception as e:
                logger.error("Error loading settings: %s", e)

            self.loaded = True
            return self._settings.model_copy()

    def ensure_loaded(self) -> AppSettings:
        with self._lock:
            if not self.loaded:
                return self.load()
            return self._settings.model_copy()

    def set_logo_url(self, url: str | None) -> AppSettings:
        with self._lock:
            self._settings = self._settings.model_copy(update={"logo_url": url})
            self._schedule_save()
            return self._settings.model_copy()

    def upload_logo(
        self, content: bytes, filename: str | None, content_type: str | None = None
    ) -> str:
        """Store a logo file and point the settings at it.

        Raises:
            RuntimeError: If the store was built without a storage client
            ConfigurationError: If no storage bucket is configured
        """
        if self.storage is None:
            raise RuntimeError("No storage client available for logo uploads")
        try:
            url = self.storage.upload_logo(content, filename, content_type)
        except Exception:
            logger.exception("Error uploading logo")
            raise
        self.set_logo_url(url)
        return url

    def _schedule_save(self) -> None:
        self._dirty = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.debounce_seconds, self._flush_from_timer)
        self._timer.daemon = True
        self._timer.start()

    def _flush_from_timer(self) -> None:
        try:
            self.flush()
        except Exception as e:
            logger.error("Error saving settings to Firestore: %s", e)

    def flush(self) -> AppSettings:
        """Write pending changes to the cache and Firestore now.

        Raises:
            Exception: Whatever the Firestore client raises on write
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._dirty:
                return self._settings.model_copy()
            self._dirty = False

            if self.doc_id:
                _, remote = self.store.get_app_settings(self.doc_id)
                if remote is not None and remote.version > self._settings.version:
                    logger.warning(
                        "Remote settings are newer (version %d > %d), "
                        "discarding local change",
                        remote.version,
                        self._settings.version,
                    )
                    self._settings = remote
                    self._write_cache(remote)
                    return remote.model_copy()

            pending = self._settings.model_copy(
                update={"version": self._settings.version + 1}
            )
            self._write_cache(pending)
            if self.doc_id:
                self.store.save_app_settings(self.doc_id, pending)
            else:
                self.doc_id = self.store.create_app_settings(pending)
            self._settings = pending
            return pending.model_copy()

    def clear_cache(self) -> None:
        self.cache_path.unlink(missing_ok=True)

    def close(self) -> None:
        """Cancel the debounce timer and write any pending change."""
        try:
            self.flush()
        except Exception as e:
            logger.error("Error saving settings on shutdown: %s", e)


@dataclass
class AppServices:
    """Everything a request handler or CLI command needs."""

    config: AppConfig
    store: FirestoreStore
    storage: StorageClient
    veryfi: VeryfiClient
    shopify: ShopifyClient
    receipts: ReceiptProcessor
    auth: AuthState
    settings: SettingsStore
    speech: SpeechSession

    def close(self) -> None:
        self.speech.disconnect()
        self.settings.close()
        self.auth.close()


def build_services(config: AppConfig | None = None) -> AppServices:
    """Create all collaborators. No network call is made until first use."""
    config = config or AppConfig.from_env()
    timeout = config.http_timeout

    store = FirestoreStore(project=config.firebase.project_id)
    storage = StorageClient(config.firebase.storage_bucket)
    veryfi = VeryfiClient(config.veryfi, timeout=timeout)
    shopify = ShopifyClient(config.shopify, timeout=timeout)
    receipts = ReceiptProcessor(veryfi, storage=storage)

    auth = AuthState(FirebaseAuthClient(config.firebase, timeout=timeout), config.signin_pin)
    settings = SettingsStore(store, config.settings_cache_path, storage=storage)
    speech = SpeechSession(config.deepgram, timeout=timeout)

    return AppServices(
        config=config,
        store=store,
        storage=storage,
        veryfi=veryfi,
        shopify=shopify,
        receipts=receipts,
        auth=auth,
        settings=settings,
        speech=speech,
    )
