"""
Firebase credentials setup for the optional persistent incident store.

Supports two methods of providing Firebase credentials:
1. Base64-encoded JSON (FIREBASE_CREDENTIALS_BASE64) - for Railway, Heroku, etc.
2. File path (FIREBASE_CREDENTIALS_PATH) - for local development, VPS

When neither is set the backend runs with the in-memory incident store.
"""

import base64
import json
import logging
import os

import firebase_admin
from firebase_admin import credentials, db

logger = logging.getLogger(__name__)


def has_firebase_config() -> bool:
    """True if any credential source and a database URL are configured."""
    has_credentials = bool(
        os.getenv('FIREBASE_CREDENTIALS_BASE64') or os.getenv('FIREBASE_CREDENTIALS_PATH')
    )
    return has_credentials and bool(os.getenv('FIREBASE_DATABASE_URL'))


def get_firebase_credentials():
    """
    Get Firebase credentials from environment.

    Returns:
        firebase_admin.credentials.Certificate: Firebase credentials object

    Raises:
        ValueError: If no valid credentials are found

    Examples:
        >>> os.environ['FIREBASE_CREDENTIALS_PATH'] = '/path/to/serviceAccount.json'
        >>> cred = get_firebase_credentials()
    """
    base64_creds = os.getenv('FIREBASE_CREDENTIALS_BASE64')
    if base64_creds:
        try:
            json_str = base64.b64decode(base64_creds).decode('utf-8')
            cred_dict = json.loads(json_str)
            return credentials.Certificate(cred_dict)
        except Exception as e:
            raise ValueError(f"Failed to decode FIREBASE_CREDENTIALS_BASE64: {e}")

    cred_path = os.getenv('FIREBASE_CREDENTIALS_PATH')
    if cred_path and os.path.exists(cred_path):
        return credentials.Certificate(cred_path)

    raise ValueError(
        "No Firebase credentials found. Set either:\n"
        "  - FIREBASE_CREDENTIALS_BASE64 (base64-encoded service account JSON)\n"
        "  - FIREBASE_CREDENTIALS_PATH (path to service account JSON file)\n\n"
        "To generate FIREBASE_CREDENTIALS_BASE64:\n"
        "  base64 -i /path/to/serviceAccount.json | tr -d '\\n'"
    )


def init_firebase_db():
    """
    Initialize the Firebase app and return the Realtime Database module.

    Returns:
        firebase_admin.db when Firebase is configured and initializes cleanly,
        otherwise None (callers fall back to the in-memory store)
    """
    if not has_firebase_config():
        logger.info("Firebase credentials not configured - incidents will be kept in memory")
        return None

    try:
        cred = get_firebase_credentials()
        try:
            firebase_admin.get_app()
        except ValueError:
            firebase_admin.initialize_app(cred, {
                'databaseURL': os.getenv('FIREBASE_DATABASE_URL')
            })
        logger.info("Firebase initialized for incident storage")
        return db
    except ValueError as e:
        logger.error(f"Firebase initialization failed: {e}")
        logger.error("Falling back to the in-memory incident store")
        return None
