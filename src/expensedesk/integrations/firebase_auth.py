"""Anonymous sign-in through the Firebase Auth REST API."""

import requests

from expensedesk.config import FirebaseConfig
from expensedesk.models import SimpleUser

SIGN_UP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"


class FirebaseAuthError(Exception):
    """Raised when Firebase Auth rejects a sign-in request."""


class FirebaseAuthClient:
    def __init__(
        self,
        config: FirebaseConfig,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def sign_in_anonymously(self) -> SimpleUser:
        """Create a fresh anonymous Firebase user and return its session.

        Raises:
            ConfigurationError: If FIREBASE_API_KEY is not set
            FirebaseAuthError: If Firebase rejects the request
        """
        api_key = self.config.require("api_key").api_key
        response = self.session.post(
            SIGN_UP_URL,
            params={"key": api_key},
            json={"returnSecureToken": True},
            timeout=self.timeout,
        )
        if not response.ok:
            raise FirebaseAuthError(
                f"Anonymous sign-in failed: {response.status_code} {response.text}"
            )
        payload = response.json()
        return SimpleUser(
            uid=payload["localId"],
            email=payload.get("email") or None,
            display_name=payload.get("displayName") or None,
            photo_url=payload.get("photoUrl") or None,
            id_token=payload.get("idToken"),
            refresh_token=payload.get("refreshToken"),
        )
