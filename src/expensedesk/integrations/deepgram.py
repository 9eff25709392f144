"""Deepgram speech-to-text session.

Audio clips are posted to the listen endpoint and their transcripts are
appended to a running transcript. The session only reports its connection
state; it never reconnects on its own.
"""

import logging
from enum import StrEnum

import requests

from expensedesk.config import DeepgramConfig

logger = logging.getLogger(__name__)

LISTEN_URL = "https://api.deepgram.com/v1/listen"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SpeechSession:
    """Speech-to-text session with an observable connection state.

    Attributes:
        state: Current connection state
        transcript: Everything transcribed since the session connected
    """

    def __init__(
        self,
        config: DeepgramConfig,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self.state = ConnectionState.DISCONNECTED
        self.transcript = ""
        self._session = session
        self._http: requests.Session | None = None

    def connect(self) -> ConnectionState:
        if not self.config.api_key:
            logger.error("No Deepgram API key available")
            self.state = ConnectionState.ERROR
            return self.state

        self.state = ConnectionState.CONNECTING
        self._http = self._session or requests.Session()
        self._http.headers["Authorization"] = f"Token {self.config.api_key}"
        self.transcript = ""
        self.state = ConnectionState.CONNECTED
        return self.state

    def transcribe(self, audio: bytes, mimetype: str = "audio/wav") -> str:
        """Transcribe one audio clip and append it to the running transcript.

        Raises:
            RuntimeError: If the session is not connected
            requests.RequestException: If Deepgram fails; the state becomes ERROR
        """
        if self.state != ConnectionState.CONNECTED or self._http is None:
            raise RuntimeError("Speech session is not connected")

        try:
            response = self._http.post(
                LISTEN_URL,
                params={"punctuate": "true"},
                headers={"Content-Type": mimetype},
                data=audio,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException:
            logger.exception("Deepgram request failed")
            self.state = ConnectionState.ERROR
            raise

        payload = response.json()
        channels = payload.get("results", {}).get("channels") or [{}]
        alternatives = channels[0].get("alternatives") or [{}]
        text = alternatives[0].get("transcript") or ""
        if text:
            self.transcript = f"{self.transcript} {text}"
        return text

    def disconnect(self) -> None:
        if self._http is not None and self._http is not self._session:
            self._http.close()
        self._http = None
        self.state = ConnectionState.DISCONNECTED
