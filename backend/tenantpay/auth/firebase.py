"""
Firebase Admin SDK setup and ID token verification.

Tenant membership and role are carried as custom claims on the Firebase
user (set by the tenant service), so no user table lookup is needed here.
"""
import json
import logging
import os
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import auth, credentials, exceptions

from tenantpay.config import settings

logger = logging.getLogger(__name__)

TENANT_CLAIM = "tenant_id"
ROLE_CLAIM = "role"

_firebase_app: Optional[firebase_admin.App] = None


def _load_credentials(value: str) -> credentials.Base:
    """
    FIREBASE_CREDENTIALS_JSON is either a path to a service account file or
    the JSON itself.

    Raises:
        ValueError: If it is neither
    """
    candidates = [value]
    if not os.path.isabs(value):
        package_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        candidates.insert(0, os.path.join(package_dir, value.lstrip("./")))

    for path in candidates:
        if os.path.exists(path):
            logger.info(f"Loaded Firebase credentials from file: {path}")
            return credentials.Certificate(path)

    try:
        return credentials.Certificate(json.loads(value))
    except json.JSONDecodeError:
        raise ValueError("FIREBASE_CREDENTIALS_JSON must be a valid file path or JSON string")


def initialize_firebase() -> None:
    """
    Initialize the Firebase Admin SDK once.

    Falls back to application default credentials when no service account
    is configured (local development with gcloud).
    """
    global _firebase_app

    if _firebase_app is not None:
        return

    if not settings.firebase_project_id:
        raise ValueError("FIREBASE_PROJECT_ID must be set")

    if settings.firebase_credentials_json:
        cred = _load_credentials(settings.firebase_credentials_json)
    else:
        cred = credentials.ApplicationDefault()

    _firebase_app = firebase_admin.initialize_app(cred, {"projectId": settings.firebase_project_id})


def verify_firebase_token(token: str) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its claims.

    Raises:
        RuntimeError: If the SDK was never initialized
        ValueError: If the token is invalid, expired or revoked
    """
    if _firebase_app is None:
        raise RuntimeError("Firebase Admin SDK not initialized. Call initialize_firebase() first.")

    try:
        return auth.verify_id_token(token)
    except ValueError:
        raise
    except exceptions.FirebaseError as e:
        raise ValueError(f"Token verification failed: {e}")
