"""Firebase bootstrap shared by the API process and the scripts."""
from __future__ import annotations
import json
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from app.scripts.logging_config import get_logger
from config import settings

logger = get_logger("firebase_app")


def is_initialized() -> bool:
    try:
        firebase_admin.get_app()
        return True
    except ValueError:
        return False


def init_firebase() -> bool:
    """Initialize the default Firebase app once. Returns True when Firebase is usable."""
    if is_initialized():
        return True
    cred_obj = None
    bucket_from_json: Optional[str] = None
    try:
        if settings.FIREBASE_CREDENTIALS_JSON_STRING:
            cred_info = json.loads(settings.FIREBASE_CREDENTIALS_JSON_STRING)
            bucket_from_json = cred_info.get('storage_bucket') or cred_info.get('storageBucket')
            cred_obj = credentials.Certificate(cred_info)
            logger.info("Firebase credentials loaded from FIREBASE_CREDENTIALS_JSON_STRING.")
        elif settings.GOOGLE_APPLICATION_CREDENTIALS:
            try:
                with open(settings.GOOGLE_APPLICATION_CREDENTIALS, 'r', encoding='utf-8') as f:
                    ci = json.load(f)
                    bucket_from_json = ci.get('storage_bucket') or ci.get('storageBucket')
                cred_obj = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
                logger.info("Firebase credentials loaded from GOOGLE_APPLICATION_CREDENTIALS file.")
            except Exception as e:
                bucket_from_json = None
                logger.warning("Failed to read GOOGLE_APPLICATION_CREDENTIALS file: %s", e)

        if not cred_obj:
            logger.warning("Firebase credentials not found. Firestore backend will be unavailable.")
            return False

        init_options: dict = {}
        chosen_bucket = bucket_from_json or settings.FIREBASE_STORAGE_BUCKET  # JSON의 storage_bucket 우선
        if chosen_bucket:
            init_options['storageBucket'] = chosen_bucket
            logger.info("Firebase init with storageBucket=%s", chosen_bucket)
        else:
            logger.info("Firebase init without explicit storageBucket (project-id fallback may apply).")

        firebase_admin.initialize_app(cred_obj, init_options or None)
        logger.info("Firebase initialized successfully.")
        return True
    except Exception as e:
        logger.exception("Firebase initialization failed: %s", e)
        return False
