"""Expensedesk integrations module."""

from expensedesk.integrations.deepgram import ConnectionState, SpeechSession
from expensedesk.integrations.firebase_auth import FirebaseAuthClient, FirebaseAuthError
from expensedesk.integrations.firestore_db import FirestoreStore
from expensedesk.integrations.shopify import ShopifyApiError, ShopifyClient
from expensedesk.integrations.storage import StorageClient
from expensedesk.integrations.veryfi import VeryfiApiError, VeryfiClient

__all__ = [
    "ConnectionState",
    "FirebaseAuthClient",
    "FirebaseAuthError",
    "FirestoreStore",
    "ShopifyApiError",
    "ShopifyClient",
    "SpeechSession",
    "StorageClient",
    "VeryfiApiError",
    "VeryfiClient",
]
