import json
import logging
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials

from app.core.config import settings

logger = logging.getLogger("compia.auth")


def _credentials_from_settings() -> credentials.Base:
    if settings.FIREBASE_CREDENTIALS_JSON:
        return credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON))
    if settings.FIREBASE_CREDENTIALS_PATH:
        return credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    logger.info("firebase sem credencial explicita; usando Application Default Credentials")
    return credentials.ApplicationDefault()


@lru_cache
def get_firebase_app() -> firebase_admin.App:
    """Inicializa o app do Firebase uma unica vez, so quando AUTH_PROVIDER=firebase."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
        return firebase_admin.initialize_app(_credentials_from_settings(), options)
