# file: app/services/firebase_app.py

import logging

import firebase_admin
from firebase_admin import credentials

from app.config import FIREBASE_CREDENTIALS_PATH

logger = logging.getLogger(__name__)


def init_firebase() -> bool:
    """Initializes the default Firebase Admin app once per process. Returns False if credentials are unusable."""
    if firebase_admin._apps:
        return True
    try:
        cred = credentials.Certificate(FIREBASE_CREDENTIALS_PATH)
        firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK initialized.")
        return True
    except Exception as e:
        logger.error("Error initializing Firebase Admin SDK from %s: %s", FIREBASE_CREDENTIALS_PATH, e)
        return False
