"""Firebase Admin SDK initialization for push delivery."""

import json
import os

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)

_firebase_app: firebase_admin.App | None = None


def initialize_firebase(
    firebase_credentials_path: str | None = None, firebase_config_json: str | None = None
) -> None:
    """
    Initialize Firebase Admin SDK so Cloud Messaging can deliver session notifications.

    Credentials are taken from, in order: the raw service-account JSON, the
    service-account file path, then application default credentials.
    """
    global _firebase_app

    if _firebase_app is not None:
        return

    cred = None
    if firebase_config_json:
        logger.info("firebase_credentials_from_json")
        cred = credentials.Certificate(json.loads(firebase_config_json))
    elif firebase_credentials_path and os.path.exists(firebase_credentials_path):
        logger.info("firebase_credentials_from_file", path=firebase_credentials_path)
        cred = credentials.Certificate(firebase_credentials_path)

    try:
        _firebase_app = firebase_admin.initialize_app(cred) if cred else firebase_admin.initialize_app()
    except Exception as e:
        logger.error("firebase_initialization_error", error=str(e))
        raise


def is_firebase_initialized() -> bool:
    """Check whether push delivery can be attempted."""
    return _firebase_app is not None
