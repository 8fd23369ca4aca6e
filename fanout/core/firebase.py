import logging
from typing import Any

import firebase_admin
from firebase_admin import App, auth, credentials

from fanout.config import Settings, get_settings

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Settings | None = None) -> App | None:
  """Initialize the default Firebase Admin app and return it, or None when unconfigured."""
  if firebase_admin._apps:
    return firebase_admin.get_app()

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("Firebase Project ID not set. Firebase Admin SDK not initialized; FCM delivery disabled.")
    return None

  try:
    if settings.firebase_service_account_json_path:
      cred = credentials.Certificate(settings.firebase_service_account_json_path)
      app = firebase_admin.initialize_app(cred, {"projectId": settings.firebase_project_id, "httpTimeout": settings.push_timeout_seconds})
    else:
      # Application Default Credentials (Cloud Run, GKE, gcloud auth).
      app = firebase_admin.initialize_app(options={"projectId": settings.firebase_project_id, "httpTimeout": settings.push_timeout_seconds})
    logger.info("Firebase Admin SDK initialized for project %s.", settings.firebase_project_id)
    return app
  except (ValueError, OSError) as exc:
    logger.error("Failed to initialize Firebase Admin SDK: %s", exc)
    return None


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Verify a Firebase ID token. Lazily initializes the SDK if needed."""
  if not firebase_admin._apps and initialize_firebase() is None:
    return None

  try:
    return auth.verify_id_token(id_token)
  except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError, auth.CertificateFetchError) as exc:
    logger.info("Token verification failed: %s", exc)
    return None
